"""Pydantic models for API payloads."""

from datetime import datetime

from pydantic import BaseModel


class SessionChange(BaseModel):
    """Session signal from the authentication provider; null signs out."""

    owner_id: str | None = None


class WaterIntake(BaseModel):
    """Water logging payload."""

    amount_ml: int
    at: datetime | None = None


class StepCount(BaseModel):
    """Step logging payload."""

    steps: int
    at: datetime | None = None


class SleepSession(BaseModel):
    """Sleep logging payload."""

    sleep_start: datetime
    sleep_end: datetime
    duration_hours: float | None = None
    quality: int = 0
    at: datetime | None = None


class GoalsUpdate(BaseModel):
    """Goal targets payload."""

    daily_steps_target: int = 10000
    daily_water_target_ml: int = 2000
    daily_sleep_target_hours: float = 8.0
    weekly_exercise_minutes_target: int = 150
