class EngineError(Exception):
    """Base class for errors surfaced by the flag and experiment engine."""


class FlagNotFound(EngineError):
    def __init__(self, flag_key: str):
        self.flag_key = flag_key
        super().__init__(f"Flag {flag_key} not found.")


class ExperimentNotFound(EngineError):
    def __init__(self, experiment_id: str):
        self.experiment_id = experiment_id
        super().__init__(f"Experiment {experiment_id} not found.")


class ExperimentNotActive(EngineError):
    """Raised when a first assignment is attempted outside the running window."""

    def __init__(self, experiment_id: str, detail: str = "not running"):
        self.experiment_id = experiment_id
        super().__init__(f"Experiment {experiment_id} is {detail}.")


class ParticipantNotFound(EngineError):
    def __init__(self, experiment_id: str, user_id: str):
        self.experiment_id = experiment_id
        self.user_id = user_id
        super().__init__(f"User {user_id} not found in experiment {experiment_id}.")


class InvalidTransition(EngineError):
    def __init__(self, experiment_id: str, current: str, action: str):
        self.experiment_id = experiment_id
        self.current = current
        self.action = action
        super().__init__(
            f"Cannot {action} experiment {experiment_id} from status {current}."
        )


class StoreUnavailable(EngineError):
    """I/O failure while talking to the backing store."""


class FlagMisconfigured(EngineError):
    """A stored flag row that does not validate as a flag configuration."""

    def __init__(self, flag_key: str, detail: str = ""):
        self.flag_key = flag_key
        super().__init__(f"Flag {flag_key} is misconfigured. {detail}".strip())
