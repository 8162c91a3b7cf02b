import logging
import uuid
from typing import Any, Dict, Optional

from app.core.clock import Clock, utcnow
from app.core.errors import ExperimentNotFound, ParticipantNotFound
from app.models.schemas.event import TrackedEvent
from app.repositories.store import AssignmentStore, ConfigReader

logger = logging.getLogger(__name__)


class EventService:
    def __init__(self, config: ConfigReader, store: AssignmentStore, clock: Clock = utcnow):
        self.config = config
        self.store = store
        self.clock = clock

    def track(
        self,
        experiment_id: str,
        user_id: str,
        event_type: str,
        event_data: Optional[Dict[str, Any]] = None,
    ) -> TrackedEvent:
        """
        Records an event for a user already assigned to the experiment.

        1. Finds the user's participant record (the experiment's status and
           dates are not re-checked here).
        2. Records the event with the participant's variant copied onto it.
        """
        if self.config.get_experiment(experiment_id) is None:
            raise ExperimentNotFound(experiment_id)

        participant = self.store.get_participant(experiment_id, user_id)
        if participant is None:
            raise ParticipantNotFound(experiment_id, user_id)

        event = self.store.insert_event(
            TrackedEvent(
                event_id=str(uuid.uuid4()),
                experiment_id=experiment_id,
                user_id=user_id,
                variant=participant.variant,
                event_type=event_type,
                event_data=event_data or {},
                tracked_at=self.clock(),
            )
        )
        logger.debug(
            "Tracked %s for user %s (%s) in experiment %s",
            event_type,
            user_id,
            event.variant.value,
            experiment_id,
        )
        return event
