"""Daily aggregation and wellness scoring."""

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from wellness_tracker.domain.records import (
    MAX_WELLNESS_SCORE,
    DailyAggregate,
    Event,
    Goals,
    SleepEvent,
    StepEvent,
    WaterEvent,
    parse_day,
)

STEPS_WEIGHT = 40
WATER_WEIGHT = 30
SLEEP_WEIGHT = 30


@dataclass(frozen=True)
class PeriodSummary:
    """Aggregates for a day range with per-metric averages."""

    start: date
    end: date
    daily: list[DailyAggregate]
    avg_steps: float
    avg_water_ml: float
    avg_sleep_hours: float
    avg_wellness_score: float


def wellness_score(
    total_steps: int, total_water_ml: int, total_sleep_hours: float, goals: Goals
) -> int:
    """Return the 0-100 score; each metric is capped at its own weight."""
    steps = min(STEPS_WEIGHT, STEPS_WEIGHT * total_steps / goals.daily_steps_target)
    water = min(
        WATER_WEIGHT, WATER_WEIGHT * total_water_ml / goals.daily_water_target_ml
    )
    sleep = min(
        SLEEP_WEIGHT, SLEEP_WEIGHT * total_sleep_hours / goals.daily_sleep_target_hours
    )
    return max(0, min(MAX_WELLNESS_SCORE, math.floor(steps + water + sleep)))


def recompute(
    owner_id: str,
    day: date | str,
    events: Iterable[Event],
    goals: Goals,
    stamp: datetime | None = None,
) -> DailyAggregate:
    """Recompute the aggregate of one owner's day from its raw events.

    Events belonging to another owner or day are ignored. Sleep is averaged
    over sessions rather than summed; ``math.fsum`` keeps the average
    independent of event order. ``stamp`` becomes both ``created_at`` and
    ``updated_at``.
    """
    target_day = parse_day(day)
    water_ml = 0
    steps = 0
    sleep_hours: list[float] = []
    for event in events:
        if event.owner_id != owner_id or event.day != target_day:
            continue
        if isinstance(event, WaterEvent):
            water_ml += event.amount_ml
        elif isinstance(event, StepEvent):
            steps += event.steps
        elif isinstance(event, SleepEvent):
            sleep_hours.append(event.duration_hours)

    avg_sleep = math.fsum(sleep_hours) / len(sleep_hours) if sleep_hours else 0.0
    return DailyAggregate(
        owner_id=owner_id,
        day=target_day,
        total_water_ml=water_ml,
        total_steps=steps,
        total_sleep_hours=avg_sleep,
        wellness_score=wellness_score(steps, water_ml, avg_sleep, goals),
        created_at=stamp,
        updated_at=stamp,
    )


def summarize_period(
    owner_id: str, aggregates: Iterable[DailyAggregate], start: date, end: date
) -> PeriodSummary:
    """Return one aggregate per day in [start, end] and their averages.

    Days without a stored aggregate count as zero-valued days.
    """
    by_day = {
        aggregate.day: aggregate
        for aggregate in aggregates
        if aggregate.owner_id == owner_id and start <= aggregate.day <= end
    }
    daily = []
    for offset in range((end - start).days + 1):
        day = start + timedelta(days=offset)
        daily.append(by_day.get(day) or DailyAggregate.zeroed(owner_id, day))

    total_days = max(len(daily), 1)
    return PeriodSummary(
        start=start,
        end=end,
        daily=daily,
        avg_steps=sum(entry.total_steps for entry in daily) / total_days,
        avg_water_ml=sum(entry.total_water_ml for entry in daily) / total_days,
        avg_sleep_hours=math.fsum(entry.total_sleep_hours for entry in daily)
        / total_days,
        avg_wellness_score=sum(entry.wellness_score for entry in daily) / total_days,
    )
