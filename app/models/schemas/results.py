from datetime import date
from typing import Dict, List

from pydantic import BaseModel, Field

from app.models.enums import Variant


class VariantConversion(BaseModel):
    total_participants: int
    conversions: int
    conversion_rate: float = Field(..., description="Percentage in [0, 100].")


class DailyTrend(BaseModel):
    day: date
    variant: Variant
    event_type: str
    event_count: int


class ExperimentResults(BaseModel):
    experiment_id: str
    participant_counts: Dict[Variant, int]
    event_counts: Dict[Variant, Dict[str, int]]
    conversion_rates: Dict[Variant, VariantConversion]
    daily_trends: List[DailyTrend] = Field(default_factory=list)
