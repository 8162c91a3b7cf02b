import threading
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from app.models.enums import ExperimentStatus
from app.models.schemas.event import TrackedEvent
from app.models.schemas.experiment import Experiment, Participant
from app.models.schemas.flag import FeatureFlag


class InMemoryStore:
    """
    Reference implementation of every store port, kept in process memory.

    All mutation happens under a single lock, which makes
    ``insert_participant_if_absent`` an atomic check-and-set per key.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._flags: Dict[str, FeatureFlag] = {}
        self._experiments: Dict[str, Experiment] = {}
        self._participants: Dict[Tuple[str, str], Participant] = {}
        self._events: Dict[str, List[TrackedEvent]] = defaultdict(list)

    # --- seeding ---

    def save_flag(self, flag: FeatureFlag) -> FeatureFlag:
        with self._lock:
            self._flags[flag.key] = flag.model_copy(deep=True)
        return flag

    def save_experiment(self, experiment: Experiment) -> Experiment:
        with self._lock:
            self._experiments[experiment.experiment_id] = experiment.model_copy(deep=True)
        return experiment

    # --- ConfigReader ---

    def get_flag(self, flag_key: str) -> Optional[FeatureFlag]:
        flag = self._flags.get(flag_key)
        return flag.model_copy(deep=True) if flag is not None else None

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        experiment = self._experiments.get(experiment_id)
        return experiment.model_copy(deep=True) if experiment is not None else None

    # --- ExperimentWriter ---

    def create_experiment(self, experiment: Experiment) -> Experiment:
        with self._lock:
            if experiment.experiment_id in self._experiments:
                raise ValueError(f"Experiment {experiment.experiment_id} already exists.")
            self._experiments[experiment.experiment_id] = experiment.model_copy(deep=True)
        return experiment

    def transition_experiment(
        self,
        experiment_id: str,
        allowed_from: Iterable[ExperimentStatus],
        changes: Dict[str, Any],
    ) -> Optional[Experiment]:
        with self._lock:
            current = self._experiments.get(experiment_id)
            if current is None or current.status not in set(allowed_from):
                return None
            updated = current.model_copy(update=changes, deep=True)
            self._experiments[experiment_id] = updated
        return updated.model_copy(deep=True)

    # --- AssignmentStore ---

    def get_participant(self, experiment_id: str, user_id: str) -> Optional[Participant]:
        participant = self._participants.get((experiment_id, user_id))
        return participant.model_copy(deep=True) if participant is not None else None

    def insert_participant_if_absent(self, participant: Participant) -> Tuple[Participant, bool]:
        key = (participant.experiment_id, participant.user_id)
        with self._lock:
            existing = self._participants.get(key)
            if existing is not None:
                return existing.model_copy(deep=True), False
            self._participants[key] = participant.model_copy(deep=True)
        return participant, True

    def list_participants(self, experiment_id: str) -> List[Participant]:
        with self._lock:
            return [
                p.model_copy(deep=True)
                for (exp_id, _), p in self._participants.items()
                if exp_id == experiment_id
            ]

    def insert_event(self, event: TrackedEvent) -> TrackedEvent:
        with self._lock:
            self._events[event.experiment_id].append(event.model_copy(deep=True))
        return event

    def list_events(
        self,
        experiment_id: str,
        event_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[TrackedEvent]:
        with self._lock:
            events = [e.model_copy(deep=True) for e in self._events.get(experiment_id, ())]
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        if start_date:
            events = [e for e in events if e.tracked_at >= start_date]
        if end_date:
            events = [e for e in events if e.tracked_at <= end_date]
        return events
