import logging
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.orm.participant import ParticipantORM
from app.models.schemas.experiment import Participant
from app.repositories.base import store_errors

logger = logging.getLogger(__name__)

# Dialects with a native "INSERT ... ON CONFLICT DO NOTHING"
_CONFLICT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class AssignmentRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_participant(self, experiment_id: str, user_id: str) -> Optional[Participant]:
        """Retrieves the sticky assignment for a user in a specific experiment."""
        with store_errors(self.db, "participant lookup"):
            participant_orm = self.db.get(
                ParticipantORM, {"experiment_id": experiment_id, "user_id": user_id}
            )
        if participant_orm is None:
            return None
        return Participant.model_validate(participant_orm)

    def list_participants(self, experiment_id: str) -> List[Participant]:
        stmt = select(ParticipantORM).where(ParticipantORM.experiment_id == experiment_id)
        with store_errors(self.db, "participant listing"):
            rows = self.db.scalars(stmt).all()
        return [Participant.model_validate(row) for row in rows]

    def insert_participant_if_absent(self, participant: Participant) -> Tuple[Participant, bool]:
        """
        Inserts the participant unless a row for the same (experiment, user)
        already exists.

        Returns the stored row, which is the winner of any concurrent race,
        together with whether this call created it.
        """
        values = participant.model_dump()
        dialect = self.db.get_bind().dialect.name

        with store_errors(self.db, "participant insert"):
            conflict_insert = _CONFLICT_INSERTS.get(dialect)
            if conflict_insert is not None:
                stmt = conflict_insert(ParticipantORM.__table__).values(**values).on_conflict_do_nothing(
                    index_elements=["experiment_id", "user_id"]
                )
                created = self.db.execute(stmt).rowcount == 1
                self.db.commit()
            else:
                created = self._insert_or_detect_conflict(values)

        if not created:
            logger.info(
                "Participant %s/%s already existed; returning stored assignment.",
                participant.experiment_id,
                participant.user_id,
            )
            # Another writer won; make sure the read below hits the database.
            self.db.expire_all()

        stored = self.get_participant(participant.experiment_id, participant.user_id)
        if stored is None:
            raise RuntimeError(
                f"Participant {participant.experiment_id}/{participant.user_id} "
                "missing after insert."
            )
        return stored, created

    def _insert_or_detect_conflict(self, values: dict) -> bool:
        try:
            self.db.add(ParticipantORM(**values))
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()
            return False
