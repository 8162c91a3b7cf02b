import logging
import uuid
from typing import Any, Dict, Optional

from app.core.clock import Clock, utcnow
from app.core.errors import ExperimentNotActive, ExperimentNotFound, InvalidTransition
from app.core.hashing import experiment_bucket
from app.models.enums import ExperimentStatus, Variant
from app.models.schemas.experiment import (
    AssignmentModel,
    AssignmentResult,
    Experiment,
    ExperimentCreateModel,
    Participant,
)
from app.models.schemas.results import ExperimentResults
from app.repositories.store import AssignmentStore, ConfigReader, ExperimentWriter
from app.services import results

logger = logging.getLogger(__name__)

# Statuses each lifecycle action may start from
_ALLOWED_FROM = {
    "start": (ExperimentStatus.DRAFT,),
    "stop": (ExperimentStatus.RUNNING,),
    "complete": (ExperimentStatus.RUNNING, ExperimentStatus.STOPPED),
}


def choose_variant(experiment: Experiment, user_id: str) -> Variant:
    """Buckets below ``traffic_allocation`` go to treatment."""
    if experiment_bucket(experiment.experiment_id, user_id) < experiment.traffic_allocation:
        return Variant.TREATMENT
    return Variant.CONTROL


class ExperimentService:
    def __init__(
        self,
        config: ConfigReader,
        store: AssignmentStore,
        writer: Optional[ExperimentWriter] = None,
        clock: Clock = utcnow,
    ):
        self.config = config
        self.store = store
        self.writer = writer
        self.clock = clock

    def _get_experiment(self, experiment_id: str) -> Experiment:
        experiment = self.config.get_experiment(experiment_id)
        if experiment is None:
            raise ExperimentNotFound(experiment_id)
        return experiment

    def get_experiment(self, experiment_id: str) -> Experiment:
        return self._get_experiment(experiment_id)

    def _require_writer(self) -> ExperimentWriter:
        if self.writer is None:
            raise RuntimeError("ExperimentService was built without an experiment writer.")
        return self.writer

    # --- Assignment ---

    def _ensure_active(self, experiment: Experiment) -> None:
        if experiment.status != ExperimentStatus.RUNNING:
            raise ExperimentNotActive(experiment.experiment_id, experiment.status.value)
        now = self.clock()
        if experiment.start_date is not None and experiment.start_date > now:
            raise ExperimentNotActive(experiment.experiment_id, "not started yet")
        if experiment.end_date is not None and experiment.end_date < now:
            raise ExperimentNotActive(experiment.experiment_id, "past its end date")

    def assign(
        self, experiment: Experiment, user_id: str, context: Optional[Dict[str, Any]] = None
    ) -> AssignmentResult:
        """
        Returns the user's sticky variant, creating it on first call.

        An existing participant is returned as-is, whatever the experiment's
        current status, dates or allocation. New participants are only created
        while the experiment is running and inside its date window.
        """
        existing = self.store.get_participant(experiment.experiment_id, user_id)
        if existing is not None:
            return AssignmentResult(variant=existing.variant, is_new=False)

        self._ensure_active(experiment)

        variant = choose_variant(experiment, user_id)
        stored, created = self.store.insert_participant_if_absent(
            Participant(
                experiment_id=experiment.experiment_id,
                user_id=user_id,
                variant=variant,
                context=context or {},
                assigned_at=self.clock(),
            )
        )
        if created:
            logger.info(
                "Assigned user %s to %s in experiment %s",
                user_id,
                stored.variant.value,
                experiment.experiment_id,
            )
        return AssignmentResult(variant=stored.variant, is_new=created)

    def assign_variant(
        self, experiment_id: str, user_id: str, context: Optional[Dict[str, Any]] = None
    ) -> AssignmentModel:
        experiment = self._get_experiment(experiment_id)
        result = self.assign(experiment, user_id, context)
        return AssignmentModel(
            variant=result.variant,
            experiment_id=experiment_id,
            user_id=user_id,
            is_new=result.is_new,
        )

    # --- Lifecycle ---

    def create_experiment(self, experiment_data: ExperimentCreateModel) -> Experiment:
        """New experiments always start out as drafts."""
        experiment = Experiment(
            experiment_id=str(uuid.uuid4()),
            status=ExperimentStatus.DRAFT,
            **experiment_data.model_dump(),
        )
        created = self._require_writer().create_experiment(experiment)
        logger.info("Created experiment %s (%s)", created.experiment_id, created.name)
        return created

    def _transition(
        self, experiment_id: str, action: str, changes: Dict[str, Any]
    ) -> Experiment:
        current = self._get_experiment(experiment_id)
        allowed_from = _ALLOWED_FROM[action]
        if current.status not in allowed_from:
            raise InvalidTransition(experiment_id, current.status.value, action)

        updated = self._require_writer().transition_experiment(
            experiment_id, allowed_from, changes
        )
        if updated is None:
            # The status moved underneath us; report what it is now.
            latest = self._get_experiment(experiment_id)
            raise InvalidTransition(experiment_id, latest.status.value, action)

        logger.info(
            "Experiment %s: %s -> %s", experiment_id, current.status.value, updated.status.value
        )
        return updated

    def start_experiment(self, experiment_id: str) -> Experiment:
        current = self._get_experiment(experiment_id)
        changes: Dict[str, Any] = {"status": ExperimentStatus.RUNNING}
        if current.start_date is None:
            changes["start_date"] = self.clock()
        return self._transition(experiment_id, "start", changes)

    def stop_experiment(self, experiment_id: str, reason: Optional[str] = None) -> Experiment:
        current = self._get_experiment(experiment_id)
        metadata = dict(current.metadata)
        metadata["stop_reason"] = reason or "Manual stop"
        return self._transition(
            experiment_id,
            "stop",
            {"status": ExperimentStatus.STOPPED, "end_date": self.clock(), "metadata": metadata},
        )

    def complete_experiment(
        self,
        experiment_id: str,
        experiment_results: Optional[Dict[str, Any]] = None,
        conclusion: Optional[str] = None,
    ) -> Experiment:
        current = self._get_experiment(experiment_id)
        changes: Dict[str, Any] = {
            "status": ExperimentStatus.COMPLETED,
            "results": experiment_results or {},
            "conclusion": conclusion,
        }
        if current.end_date is None:
            changes["end_date"] = self.clock()
        return self._transition(experiment_id, "complete", changes)

    # --- Reporting ---

    def get_results(self, experiment_id: str) -> ExperimentResults:
        """Read-only aggregates; never used to drive assignment."""
        self._get_experiment(experiment_id)
        participants = self.store.list_participants(experiment_id)
        events = self.store.list_events(experiment_id)
        return results.summarize(experiment_id, participants, events)
