from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    PrimaryKeyConstraint,
    String,
)
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.models.enums import Variant

from .base import Base, JSON_TYPE


class ParticipantORM(Base):
    """One row per (experiment, user); never updated once written."""

    __tablename__ = "experiment_participants"

    experiment_id = Column(
        String, ForeignKey("experiments.experiment_id"), nullable=False, index=True
    )
    user_id = Column(String, nullable=False, index=True)
    variant = Column(
        Enum(Variant, values_callable=lambda e: [m.value for m in e]), nullable=False
    )
    context = Column(JSON_TYPE, default=dict, nullable=False)
    assigned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # The primary key is the uniqueness guarantee for sticky assignment.
    __table_args__ = (
        PrimaryKeyConstraint("experiment_id", "user_id", name="participant_pk"),
    )

    experiment = relationship("ExperimentORM", back_populates="participants")
