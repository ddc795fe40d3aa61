"""Domain records for wellness tracking.

Every record is owned by exactly one owner id and validates itself on
construction, so storage adapters rebuilding records from rows or documents go
through the same checks as fresh input.
"""

from dataclasses import dataclass, field, fields
from datetime import UTC, date, datetime
from typing import ClassVar
from uuid import uuid4

from wellness_tracker.domain.errors import ValidationError

DAILY_AGGREGATES = "daily_aggregates"
WATER_EVENTS = "water_events"
STEP_EVENTS = "step_events"
SLEEP_EVENTS = "sleep_events"
GOALS = "goals"

EVENT_COLLECTIONS = (WATER_EVENTS, STEP_EVENTS, SLEEP_EVENTS)
COLLECTIONS = (DAILY_AGGREGATES, *EVENT_COLLECTIONS, GOALS)

GOALS_RECORD_ID = "goals"
MAX_SLEEP_QUALITY = 5
MAX_WELLNESS_SCORE = 100


def parse_day(value: date | str) -> date:
    """Return a calendar day from a date or a YYYY-MM-DD string."""
    if isinstance(value, datetime):
        raise ValidationError(f"Expected a calendar day, got a timestamp: {value!r}")
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError as exc:
            raise ValidationError(f"Invalid calendar day: {value!r}") from exc
    raise ValidationError(f"Invalid calendar day: {value!r}")


def to_utc(value: datetime | str) -> datetime:
    """Normalize a timestamp to an aware UTC datetime; naive means UTC."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValidationError(f"Invalid timestamp: {value!r}") from exc
    if not isinstance(value, datetime):
        raise ValidationError(f"Invalid timestamp: {value!r}")
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _optional_utc(value: datetime | str | None) -> datetime | None:
    return None if value is None else to_utc(value)


def _require_owner(owner_id: str) -> None:
    if not isinstance(owner_id, str) or not owner_id.strip():
        raise ValidationError("owner_id is required")


def _as_int(name: str, value: object) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValidationError(f"{name} must be an integer")


def _as_float(name: str, value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValidationError(f"{name} must be a number")
    return float(value)


def _set(record: object, name: str, value: object) -> None:
    object.__setattr__(record, name, value)


def _new_id() -> str:
    return str(uuid4())


class _Document:
    """Conversion to and from JSON-friendly documents."""

    collection: ClassVar[str]

    def to_document(self) -> dict[str, object]:
        """Return the record as a JSON-friendly dict."""
        document: dict[str, object] = {}
        for item in fields(self):  # type: ignore[arg-type]
            value = getattr(self, item.name)
            if isinstance(value, date | datetime):
                value = value.isoformat()
            document[item.name] = value
        return document

    @classmethod
    def from_document(cls, document: dict[str, object]):  # noqa: ANN206
        """Build a validated record from a stored document."""
        names = {item.name for item in fields(cls)}  # type: ignore[arg-type]
        return cls(**{key: value for key, value in document.items() if key in names})


@dataclass(frozen=True)
class WaterEvent(_Document):
    """A single logged drink."""

    owner_id: str
    amount_ml: int
    occurred_at: datetime
    day: date
    id: str = field(default_factory=_new_id)

    collection: ClassVar[str] = WATER_EVENTS

    def __post_init__(self) -> None:
        _require_owner(self.owner_id)
        amount = _as_int("amount_ml", self.amount_ml)
        if amount <= 0:
            raise ValidationError("amount_ml must be greater than zero")
        _set(self, "amount_ml", amount)
        _set(self, "occurred_at", to_utc(self.occurred_at))
        _set(self, "day", parse_day(self.day))

    @property
    def record_id(self) -> str:
        return self.id


@dataclass(frozen=True)
class StepEvent(_Document):
    """A batch of steps reported at one point in time."""

    owner_id: str
    steps: int
    occurred_at: datetime
    day: date
    id: str = field(default_factory=_new_id)

    collection: ClassVar[str] = STEP_EVENTS

    def __post_init__(self) -> None:
        _require_owner(self.owner_id)
        steps = _as_int("steps", self.steps)
        if steps <= 0:
            raise ValidationError("steps must be greater than zero")
        _set(self, "steps", steps)
        _set(self, "occurred_at", to_utc(self.occurred_at))
        _set(self, "day", parse_day(self.day))

    @property
    def record_id(self) -> str:
        return self.id


@dataclass(frozen=True)
class SleepEvent(_Document):
    """A sleep session.

    ``duration_hours`` is derived from the session bounds when omitted.
    ``quality`` is a 1-5 rating, with 0 meaning unrated.
    """

    owner_id: str
    sleep_start: datetime
    sleep_end: datetime
    occurred_at: datetime
    day: date
    duration_hours: float | None = None
    quality: int = 0
    id: str = field(default_factory=_new_id)

    collection: ClassVar[str] = SLEEP_EVENTS

    def __post_init__(self) -> None:
        _require_owner(self.owner_id)
        start = to_utc(self.sleep_start)
        end = to_utc(self.sleep_end)
        if end < start:
            raise ValidationError("sleep_end must not be before sleep_start")
        if self.duration_hours is None:
            duration = (end - start).total_seconds() / 3600
        else:
            duration = _as_float("duration_hours", self.duration_hours)
        if duration < 0:
            raise ValidationError("duration_hours must not be negative")
        quality = _as_int("quality", self.quality)
        if not 0 <= quality <= MAX_SLEEP_QUALITY:
            raise ValidationError("quality must be between 0 and 5")
        _set(self, "sleep_start", start)
        _set(self, "sleep_end", end)
        _set(self, "duration_hours", duration)
        _set(self, "quality", quality)
        _set(self, "occurred_at", to_utc(self.occurred_at))
        _set(self, "day", parse_day(self.day))

    @property
    def record_id(self) -> str:
        return self.id


@dataclass(frozen=True)
class DailyAggregate(_Document):
    """Derived per-day totals and wellness score for one owner."""

    owner_id: str
    day: date
    total_water_ml: int = 0
    total_steps: int = 0
    total_sleep_hours: float = 0.0
    wellness_score: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    collection: ClassVar[str] = DAILY_AGGREGATES

    def __post_init__(self) -> None:
        _require_owner(self.owner_id)
        _set(self, "day", parse_day(self.day))
        water = _as_int("total_water_ml", self.total_water_ml)
        steps = _as_int("total_steps", self.total_steps)
        sleep = _as_float("total_sleep_hours", self.total_sleep_hours)
        score = _as_int("wellness_score", self.wellness_score)
        if water < 0 or steps < 0 or sleep < 0:
            raise ValidationError("daily totals must not be negative")
        if not 0 <= score <= MAX_WELLNESS_SCORE:
            raise ValidationError("wellness_score must be between 0 and 100")
        _set(self, "total_water_ml", water)
        _set(self, "total_steps", steps)
        _set(self, "total_sleep_hours", sleep)
        _set(self, "wellness_score", score)
        _set(self, "created_at", _optional_utc(self.created_at))
        _set(self, "updated_at", _optional_utc(self.updated_at))

    @property
    def record_id(self) -> str:
        return self.day.isoformat()

    @classmethod
    def zeroed(cls, owner_id: str, day: date | str) -> "DailyAggregate":
        """Return the aggregate of a day without logged activity."""
        return cls(owner_id=owner_id, day=parse_day(day))


@dataclass(frozen=True)
class Goals(_Document):
    """Daily and weekly targets for one owner."""

    owner_id: str
    daily_steps_target: int = 10000
    daily_water_target_ml: int = 2000
    daily_sleep_target_hours: float = 8.0
    weekly_exercise_minutes_target: int = 150

    collection: ClassVar[str] = GOALS

    def __post_init__(self) -> None:
        _require_owner(self.owner_id)
        steps = _as_int("daily_steps_target", self.daily_steps_target)
        water = _as_int("daily_water_target_ml", self.daily_water_target_ml)
        sleep = _as_float("daily_sleep_target_hours", self.daily_sleep_target_hours)
        exercise = _as_int(
            "weekly_exercise_minutes_target", self.weekly_exercise_minutes_target
        )
        if min(steps, water, sleep, exercise) <= 0:
            raise ValidationError("goal targets must be greater than zero")
        _set(self, "daily_steps_target", steps)
        _set(self, "daily_water_target_ml", water)
        _set(self, "daily_sleep_target_hours", sleep)
        _set(self, "weekly_exercise_minutes_target", exercise)

    @property
    def record_id(self) -> str:
        return GOALS_RECORD_ID


Event = WaterEvent | StepEvent | SleepEvent
Record = DailyAggregate | WaterEvent | StepEvent | SleepEvent | Goals

RECORD_TYPES: dict[str, type[Record]] = {
    DAILY_AGGREGATES: DailyAggregate,
    WATER_EVENTS: WaterEvent,
    STEP_EVENTS: StepEvent,
    SLEEP_EVENTS: SleepEvent,
    GOALS: Goals,
}
