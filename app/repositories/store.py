from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from sqlalchemy.orm import Session

from app.models.enums import ExperimentStatus
from app.models.schemas.event import TrackedEvent
from app.models.schemas.experiment import Experiment, Participant
from app.models.schemas.flag import FeatureFlag
from app.repositories.assignment_repo import AssignmentRepository
from app.repositories.event_repo import EventRepository
from app.repositories.experiment_repo import ExperimentRepository
from app.repositories.flag_repo import FlagRepository


class ConfigReader(Protocol):
    """Read-only access to flag and experiment configuration."""

    def get_flag(self, flag_key: str) -> Optional[FeatureFlag]: ...

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]: ...


class ExperimentWriter(Protocol):
    """Administrative writes: creation and guarded lifecycle transitions."""

    def create_experiment(self, experiment: Experiment) -> Experiment: ...

    def transition_experiment(
        self,
        experiment_id: str,
        allowed_from: Iterable[ExperimentStatus],
        changes: Dict[str, Any],
    ) -> Optional[Experiment]: ...


class AssignmentStore(Protocol):
    """Persisted sticky assignments and the events tracked against them."""

    def get_participant(self, experiment_id: str, user_id: str) -> Optional[Participant]: ...

    def insert_participant_if_absent(
        self, participant: Participant
    ) -> Tuple[Participant, bool]: ...

    def insert_event(self, event: TrackedEvent) -> TrackedEvent: ...

    def list_participants(self, experiment_id: str) -> List[Participant]: ...

    def list_events(
        self,
        experiment_id: str,
        event_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[TrackedEvent]: ...


class SqlStore:
    """Implements every port on top of one SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db
        self.flag_repo = FlagRepository(db)
        self.experiment_repo = ExperimentRepository(db)
        self.assignment_repo = AssignmentRepository(db)
        self.event_repo = EventRepository(db)

    # ConfigReader
    def get_flag(self, flag_key: str) -> Optional[FeatureFlag]:
        return self.flag_repo.get_flag(flag_key)

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        return self.experiment_repo.get_experiment(experiment_id)

    # ExperimentWriter
    def create_experiment(self, experiment: Experiment) -> Experiment:
        return self.experiment_repo.create_experiment(experiment)

    def transition_experiment(
        self,
        experiment_id: str,
        allowed_from: Iterable[ExperimentStatus],
        changes: Dict[str, Any],
    ) -> Optional[Experiment]:
        return self.experiment_repo.transition_experiment(experiment_id, allowed_from, changes)

    # AssignmentStore
    def get_participant(self, experiment_id: str, user_id: str) -> Optional[Participant]:
        return self.assignment_repo.get_participant(experiment_id, user_id)

    def insert_participant_if_absent(self, participant: Participant) -> Tuple[Participant, bool]:
        return self.assignment_repo.insert_participant_if_absent(participant)

    def list_participants(self, experiment_id: str) -> List[Participant]:
        return self.assignment_repo.list_participants(experiment_id)

    def insert_event(self, event: TrackedEvent) -> TrackedEvent:
        return self.event_repo.insert_event(event)

    def list_events(
        self,
        experiment_id: str,
        event_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[TrackedEvent]:
        return self.event_repo.list_events(
            experiment_id, event_type=event_type, start_date=start_date, end_date=end_date
        )
