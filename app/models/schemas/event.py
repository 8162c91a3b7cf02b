from datetime import datetime
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.clock import as_utc
from app.models.enums import Variant


class TrackedEvent(BaseModel):
    """Append-only event; ``variant`` is copied from the participant."""

    model_config = ConfigDict(from_attributes=True)

    event_id: str
    experiment_id: str
    user_id: str
    variant: Variant
    event_type: str = Field(..., description="e.g., 'click', 'conversion'")
    event_data: Dict[str, Any] = Field(default_factory=dict)
    tracked_at: datetime

    @field_validator("tracked_at")
    @classmethod
    def normalize_tracked_at(cls, value: datetime) -> datetime:
        return as_utc(value)


class EventCreateModel(BaseModel):
    """Schema for tracking an event for an assigned user (API Input)."""

    user_id: str
    event_type: str = Field(..., min_length=1)
    event_data: Dict[str, Any] = Field(
        default_factory=dict, description="Flexible JSON object."
    )


class EventResponseModel(BaseModel):
    event_id: str
    experiment_id: str
    variant: Variant
    message: str = "Event tracked successfully"
