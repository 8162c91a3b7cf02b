from sqlalchemy import Column, DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.models.enums import ExperimentStatus

from .base import Base, JSON_TYPE


class ExperimentORM(Base):
    __tablename__ = "experiments"

    # --- Core Identifiers ---
    experiment_id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    hypothesis = Column(Text)
    category = Column(String, default="general", nullable=False)

    # --- Lifecycle ---
    status = Column(
        Enum(ExperimentStatus, values_callable=lambda e: [m.value for m in e]),
        default=ExperimentStatus.DRAFT,
        nullable=False,
    )
    traffic_allocation = Column(Integer, default=50, nullable=False)

    # --- Timing; null means unbounded ---
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)

    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSON_TYPE, default=dict, nullable=False)
    results = Column(JSON_TYPE, default=dict, nullable=False)
    conclusion = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    participants = relationship("ParticipantORM", back_populates="experiment")
    events = relationship("TrackedEventORM", back_populates="experiment")
