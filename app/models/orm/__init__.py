# Importing the models registers every table on Base.metadata.
from .base import Base
from .event import TrackedEventORM
from .experiment import ExperimentORM
from .flag import FeatureFlagORM
from .participant import ParticipantORM

__all__ = [
    "Base",
    "ExperimentORM",
    "FeatureFlagORM",
    "ParticipantORM",
    "TrackedEventORM",
]
