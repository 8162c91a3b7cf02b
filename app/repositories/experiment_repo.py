from typing import Any, Dict, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.enums import ExperimentStatus
from app.models.orm.experiment import ExperimentORM
from app.models.schemas.experiment import Experiment
from app.repositories.base import store_errors


def _to_experiment(experiment_orm: ExperimentORM) -> Experiment:
    return Experiment(
        experiment_id=experiment_orm.experiment_id,
        name=experiment_orm.name,
        description=experiment_orm.description,
        hypothesis=experiment_orm.hypothesis,
        category=experiment_orm.category,
        status=experiment_orm.status,
        traffic_allocation=experiment_orm.traffic_allocation,
        start_date=experiment_orm.start_date,
        end_date=experiment_orm.end_date,
        metadata=experiment_orm.metadata_ or {},
        results=experiment_orm.results or {},
        conclusion=experiment_orm.conclusion,
    )


def _columns(changes: Dict[str, Any]) -> Dict[str, Any]:
    # The domain field "metadata" lives in the "metadata_" attribute.
    return {("metadata_" if k == "metadata" else k): v for k, v in changes.items()}


class ExperimentRepository:
    def __init__(self, db: Session):
        """Initializes the repository with a database session."""
        self.db = db

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        with store_errors(self.db, "experiment lookup"):
            experiment_orm = self.db.get(ExperimentORM, experiment_id)
        return _to_experiment(experiment_orm) if experiment_orm is not None else None

    def create_experiment(self, experiment: Experiment) -> Experiment:
        """Persists a new experiment record built by the service."""
        experiment_orm = ExperimentORM(**_columns(experiment.model_dump()))
        with store_errors(self.db, "experiment creation"):
            self.db.add(experiment_orm)
            self.db.commit()
            self.db.refresh(experiment_orm)
        return _to_experiment(experiment_orm)

    def transition_experiment(
        self,
        experiment_id: str,
        allowed_from: Iterable[ExperimentStatus],
        changes: Dict[str, Any],
    ) -> Optional[Experiment]:
        """
        Applies ``changes`` only while the experiment is in one of ``allowed_from``.

        The status guard is part of the UPDATE statement, so two concurrent
        transitions cannot both succeed. Returns None when no row matched.
        """
        stmt = (
            update(ExperimentORM)
            .where(
                ExperimentORM.experiment_id == experiment_id,
                ExperimentORM.status.in_(list(allowed_from)),
            )
            .values({getattr(ExperimentORM, key): value for key, value in _columns(changes).items()})
            .execution_options(synchronize_session=False)
        )
        with store_errors(self.db, "experiment transition"):
            matched = self.db.execute(stmt).rowcount
            self.db.commit()
        if not matched:
            return None
        # Drop any stale copy held by the session before reading back.
        self.db.expire_all()
        return self.get_experiment(experiment_id)
