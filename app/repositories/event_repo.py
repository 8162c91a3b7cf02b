from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.orm.event import TrackedEventORM
from app.models.schemas.event import TrackedEvent
from app.repositories.base import store_errors


class EventRepository:
    def __init__(self, db: Session):
        """Initializes the repository with a database session."""
        self.db = db

    def list_events(
        self,
        experiment_id: str,
        event_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[TrackedEvent]:
        """
        Retrieves events for a specific experiment, applying optional filters
        for event type and time range.
        """
        stmt = select(TrackedEventORM).where(TrackedEventORM.experiment_id == experiment_id)

        if event_type:
            stmt = stmt.where(TrackedEventORM.event_type == event_type)

        if start_date:
            stmt = stmt.where(TrackedEventORM.tracked_at >= start_date)

        if end_date:
            stmt = stmt.where(TrackedEventORM.tracked_at <= end_date)

        stmt = stmt.order_by(TrackedEventORM.tracked_at)

        with store_errors(self.db, "event listing"):
            rows = self.db.scalars(stmt).all()
        return [TrackedEvent.model_validate(row) for row in rows]

    def insert_event(self, event: TrackedEvent) -> TrackedEvent:
        """Appends a tracked event; events are never updated."""
        event_orm = TrackedEventORM(**event.model_dump())
        with store_errors(self.db, "event creation"):
            self.db.add(event_orm)
            self.db.commit()
            self.db.refresh(event_orm)
        return TrackedEvent.model_validate(event_orm)
