import enum


class ExperimentStatus(str, enum.Enum):
    DRAFT = "draft"
    RUNNING = "running"
    STOPPED = "stopped"
    COMPLETED = "completed"


class Variant(str, enum.Enum):
    CONTROL = "control"
    TREATMENT = "treatment"
