from collections import Counter
from typing import Dict, Iterable, List, Sequence

from app.models.enums import Variant
from app.models.schemas.event import TrackedEvent
from app.models.schemas.experiment import Participant
from app.models.schemas.results import DailyTrend, ExperimentResults, VariantConversion

CONVERSION_EVENT = "conversion"


def participant_counts(participants: Iterable[Participant]) -> Dict[Variant, int]:
    counts = {variant: 0 for variant in Variant}
    for participant in participants:
        counts[participant.variant] += 1
    return counts


def event_counts(events: Iterable[TrackedEvent]) -> Dict[Variant, Dict[str, int]]:
    counts: Dict[Variant, Dict[str, int]] = {variant: {} for variant in Variant}
    for event in events:
        by_type = counts[event.variant]
        by_type[event.event_type] = by_type.get(event.event_type, 0) + 1
    return counts


def conversion_stats(
    participants: Sequence[Participant], events: Sequence[TrackedEvent], variant: Variant
) -> VariantConversion:
    """
    Distinct converting users over distinct participants of ``variant``, as a
    percentage. Only users enrolled in the variant count as conversions.
    """
    enrolled = {p.user_id for p in participants if p.variant == variant}
    converted = {
        e.user_id
        for e in events
        if e.event_type == CONVERSION_EVENT and e.variant == variant and e.user_id in enrolled
    }
    rate = len(converted) / len(enrolled) * 100 if enrolled else 0.0
    return VariantConversion(
        total_participants=len(enrolled),
        conversions=len(converted),
        conversion_rate=rate,
    )


def conversion_rate(
    participants: Sequence[Participant], events: Sequence[TrackedEvent], variant: Variant
) -> float:
    return conversion_stats(participants, events, variant).conversion_rate


def daily_trends(events: Iterable[TrackedEvent]) -> List[DailyTrend]:
    counter = Counter(
        (event.tracked_at.date(), event.variant, event.event_type) for event in events
    )
    return [
        DailyTrend(day=day, variant=variant, event_type=event_type, event_count=count)
        for (day, variant, event_type), count in sorted(
            counter.items(), key=lambda item: (item[0][0], item[0][1].value, item[0][2])
        )
    ]


def summarize(
    experiment_id: str, participants: Sequence[Participant], events: Sequence[TrackedEvent]
) -> ExperimentResults:
    return ExperimentResults(
        experiment_id=experiment_id,
        participant_counts=participant_counts(participants),
        event_counts=event_counts(events),
        conversion_rates={
            variant: conversion_stats(participants, events, variant) for variant in Variant
        },
        daily_trends=daily_trends(events),
    )
