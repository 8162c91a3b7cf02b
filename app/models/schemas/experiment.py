from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.core.clock import as_utc
from app.models.enums import ExperimentStatus, Variant


class Experiment(BaseModel):
    """Data model for a persistent experiment record."""

    model_config = ConfigDict(from_attributes=True)

    experiment_id: str = Field(..., description="Unique ID for the experiment.")
    name: str
    description: Optional[str] = None
    hypothesis: Optional[str] = None
    category: str = "general"
    status: ExperimentStatus = ExperimentStatus.DRAFT
    traffic_allocation: int = Field(
        50,
        ge=0,
        le=100,
        description="Percentage of the bucket space sent to the treatment variant.",
    )
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    results: Dict[str, Any] = Field(default_factory=dict)
    conclusion: Optional[str] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @property
    def variants(self) -> Tuple[Variant, Variant]:
        return (Variant.CONTROL, Variant.TREATMENT)


class ExperimentCreateModel(BaseModel):
    name: str
    description: Optional[str] = None
    hypothesis: Optional[str] = None
    category: str = "general"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    traffic_allocation: int = Field(50, ge=0, le=100)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_date_window(self) -> "ExperimentCreateModel":
        if self.start_date and self.end_date and as_utc(self.end_date) < as_utc(self.start_date):
            raise ValueError("end_date must not be earlier than start_date")
        return self


class ExperimentStopModel(BaseModel):
    reason: Optional[str] = None


class ExperimentCompleteModel(BaseModel):
    results: Dict[str, Any] = Field(default_factory=dict)
    conclusion: Optional[str] = None


# --- User Assignment ---


class Participant(BaseModel):
    """Sticky assignment of a user to one variant of an experiment."""

    model_config = ConfigDict(from_attributes=True)

    experiment_id: str
    user_id: str
    variant: Variant
    context: Dict[str, Any] = Field(default_factory=dict)
    assigned_at: datetime

    @field_validator("assigned_at")
    @classmethod
    def normalize_assigned_at(cls, value: datetime) -> datetime:
        return as_utc(value)


class AssignmentRequest(BaseModel):
    user_id: str
    context: Dict[str, Any] = Field(default_factory=dict)


class AssignmentResult(BaseModel):
    variant: Variant
    is_new: bool


class AssignmentModel(BaseModel):
    variant: Variant
    experiment_id: str
    user_id: str
    is_new: bool = Field(
        ..., description="False when an existing sticky assignment was returned."
    )
