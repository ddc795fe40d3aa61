"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from wellness_tracker.api.models import (
    GoalsUpdate,
    SleepSession,
    StepCount,
    WaterIntake,
)
from wellness_tracker.api.session import router as session_router
from wellness_tracker.app_logging import configure_logging
from wellness_tracker.containers import AppContainer
from wellness_tracker.domain.errors import (
    NoSession,
    PersistenceError,
    RemoteStoreError,
    SessionTransitionError,
    ValidationError,
)
from wellness_tracker.domain.records import Event, Goals
from wellness_tracker.services.aggregation import PeriodSummary


def create_app(container: AppContainer) -> FastAPI:  # noqa: PLR0915
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(session_router)

    @app.exception_handler(ValidationError)
    async def validation_error(_request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(NoSession)
    async def no_session(_request: Request, exc: NoSession) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(SessionTransitionError)
    async def session_transition(
        _request: Request, exc: SessionTransitionError
    ) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(RemoteStoreError)
    async def remote_store_error(
        _request: Request, exc: RemoteStoreError
    ) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(PersistenceError)
    async def persistence_error(
        _request: Request, exc: PersistenceError
    ) -> JSONResponse:
        logger.error("Local cache failure: %s", exc)
        return JSONResponse(status_code=500, content={"detail": "Local storage failed"})

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/water")
    async def record_water(payload: WaterIntake, request: Request) -> dict[str, object]:
        """Log water intake."""
        state_container: AppContainer = request.app.state.container
        event = await state_container.repository.record_water(
            payload.amount_ml, at=payload.at
        )
        return _event_response(state_container, event)

    @app.post("/steps")
    async def record_steps(payload: StepCount, request: Request) -> dict[str, object]:
        """Log steps."""
        state_container: AppContainer = request.app.state.container
        event = await state_container.repository.record_steps(
            payload.steps, at=payload.at
        )
        return _event_response(state_container, event)

    @app.post("/sleep")
    async def record_sleep(
        payload: SleepSession, request: Request
    ) -> dict[str, object]:
        """Log a sleep session."""
        state_container: AppContainer = request.app.state.container
        event = await state_container.repository.record_sleep(
            payload.sleep_start,
            payload.sleep_end,
            duration_hours=payload.duration_hours,
            quality=payload.quality,
            at=payload.at,
        )
        return _event_response(state_container, event)

    @app.get("/aggregates")
    async def period_summary(
        start: str, end: str, request: Request
    ) -> dict[str, object]:
        """Return aggregates and averages for a day range."""
        state_container: AppContainer = request.app.state.container
        summary = await state_container.repository.get_period_summary(start, end)
        return _summary_response(summary)

    @app.get("/aggregates/{day}")
    async def daily_aggregate(day: str, request: Request) -> dict[str, object]:
        """Return the aggregate of a day."""
        state_container: AppContainer = request.app.state.container
        aggregate = await state_container.repository.get_aggregate(day)
        return aggregate.to_document()

    @app.get("/events/{day}")
    async def day_events(day: str, request: Request) -> dict[str, object]:
        """Return the raw events logged on a day."""
        state_container: AppContainer = request.app.state.container
        events = await state_container.repository.get_day_events(day)
        return {
            "day": events.day.isoformat(),
            "water": [event.to_document() for event in events.water],
            "steps": [event.to_document() for event in events.steps],
            "sleep": [event.to_document() for event in events.sleep],
        }

    @app.get("/goals")
    async def get_goals(request: Request) -> dict[str, object]:
        """Return the owner's goals."""
        state_container: AppContainer = request.app.state.container
        goals = await state_container.repository.get_goals()
        return goals.to_document()

    @app.put("/goals")
    async def update_goals(payload: GoalsUpdate, request: Request) -> dict[str, object]:
        """Replace the owner's goals."""
        state_container: AppContainer = request.app.state.container
        repository = state_container.repository
        goals = Goals(owner_id=repository.owner_id, **payload.model_dump())
        stored = await repository.update_goals(goals)
        return stored.to_document()

    @app.post("/reset")
    async def reset(request: Request) -> dict[str, str]:
        """Clear the owner's local data; remote data is kept."""
        state_container: AppContainer = request.app.state.container
        await state_container.repository.reset_all_data()
        return {"status": "ok"}

    @app.delete("/remote-data")
    async def purge_remote(request: Request) -> dict[str, str]:
        """Delete the owner's remote data."""
        state_container: AppContainer = request.app.state.container
        await state_container.repository.purge_remote_data()
        return {"status": "ok"}

    @app.post("/sync")
    async def sync(request: Request) -> dict[str, object]:
        """Push pending local records to the remote store."""
        state_container: AppContainer = request.app.state.container
        report = await state_container.repository.sync_local_to_remote()
        return {
            "pushed": report.pushed,
            "remaining": report.remaining,
            "status": str(report.status),
            "complete": report.complete,
        }

    return app


def _event_response(container: AppContainer, event: Event) -> dict[str, object]:
    aggregate = container.aggregate_channel.latest(event.owner_id, event.day)
    return {
        "event": event.to_document(),
        "aggregate": aggregate.to_document() if aggregate else None,
        "needs_reauth": container.repository.needs_reauth,
    }


def _summary_response(summary: PeriodSummary) -> dict[str, object]:
    return {
        "start": summary.start.isoformat(),
        "end": summary.end.isoformat(),
        "daily": [aggregate.to_document() for aggregate in summary.daily],
        "avg_steps": summary.avg_steps,
        "avg_water_ml": summary.avg_water_ml,
        "avg_sleep_hours": summary.avg_sleep_hours,
        "avg_wellness_score": summary.avg_wellness_score,
    }
