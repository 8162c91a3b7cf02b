from sqlalchemy import Column, DateTime, Enum, ForeignKey, String
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.models.enums import Variant

from .base import Base, JSON_TYPE


class TrackedEventORM(Base):
    __tablename__ = "experiment_events"

    event_id = Column(String, primary_key=True, index=True)

    experiment_id = Column(
        String, ForeignKey("experiments.experiment_id"), index=True, nullable=False
    )
    user_id = Column(String, nullable=False, index=True)
    variant = Column(
        Enum(Variant, values_callable=lambda e: [m.value for m in e]), nullable=False
    )

    event_type = Column(String, nullable=False, index=True)
    event_data = Column(JSON_TYPE, default=dict, nullable=False)

    tracked_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    experiment = relationship("ExperimentORM", back_populates="events")
