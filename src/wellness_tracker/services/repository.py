"""Offline-first repository for wellness records."""

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any
from zoneinfo import ZoneInfo

from wellness_tracker.domain.errors import (
    NoSession,
    RemoteStoreError,
    Unauthorized,
    ValidationError,
)
from wellness_tracker.domain.records import (
    DAILY_AGGREGATES,
    EVENT_COLLECTIONS,
    GOALS,
    GOALS_RECORD_ID,
    SLEEP_EVENTS,
    STEP_EVENTS,
    WATER_EVENTS,
    DailyAggregate,
    Event,
    Goals,
    Record,
    SleepEvent,
    StepEvent,
    WaterEvent,
    parse_day,
    to_utc,
)
from wellness_tracker.services.aggregation import (
    PeriodSummary,
    recompute,
    summarize_period,
)
from wellness_tracker.services.observers import (
    AggregateChannel,
    AggregateSubscription,
)
from wellness_tracker.services.sessions import SessionLifecycleManager
from wellness_tracker.services.stores import LocalCacheStore, RemoteStore, remote_path

_logger = logging.getLogger(__name__)

LockKey = tuple[str, date | str]


class RemoteStatus(StrEnum):
    """Outcome of a best-effort remote call."""

    OK = "ok"
    UNAVAILABLE = "unavailable"
    UNAUTHORIZED = "unauthorized"


@dataclass(frozen=True)
class SyncReport:
    """Result of pushing pending cache records to the remote store."""

    pushed: int
    remaining: int
    status: RemoteStatus

    @property
    def complete(self) -> bool:
        return self.status is RemoteStatus.OK and self.remaining == 0


@dataclass(frozen=True)
class DayEvents:
    """Raw events logged for one day."""

    day: date
    water: list[WaterEvent]
    steps: list[StepEvent]
    sleep: list[SleepEvent]


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class WellnessRepository:
    """Facade for recording events and reading aggregates.

    Writes go to the remote store first on a best-effort basis and always to
    the local cache; records whose remote write failed stay flagged as
    pending until ``sync_local_to_remote`` pushes them. Aggregate reads prefer
    the remote store and fall back to the cache. Goals are scored from the
    cache, so a cached goals row is authoritative and the remote copy is only
    read to seed an empty cache.
    """

    session: SessionLifecycleManager
    remote: RemoteStore
    channel: AggregateChannel
    timezone_name: str = "UTC"
    clock: Callable[[], datetime] = _utc_now
    needs_reauth: bool = False
    _locks: dict[LockKey, asyncio.Lock] = field(default_factory=dict, repr=False)
    _lock_users: Counter[LockKey] = field(default_factory=Counter, repr=False)
    _sync_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def owner_id(self) -> str:
        """Return the active owner id or raise ``NoSession``."""
        return self.session.require_owner()

    async def record_water(
        self, amount_ml: int, at: datetime | None = None
    ) -> WaterEvent:
        """Log a drink and refresh the day's aggregate."""
        owner_id, store = self.session.require_active()
        occurred_at = self._resolve_time(at)
        event = WaterEvent(
            owner_id=owner_id,
            amount_ml=amount_ml,
            occurred_at=occurred_at,
            day=self._day_of(occurred_at),
        )
        await self._write_event(owner_id, store, event)
        return event

    async def record_steps(self, steps: int, at: datetime | None = None) -> StepEvent:
        """Log steps and refresh the day's aggregate."""
        owner_id, store = self.session.require_active()
        occurred_at = self._resolve_time(at)
        event = StepEvent(
            owner_id=owner_id,
            steps=steps,
            occurred_at=occurred_at,
            day=self._day_of(occurred_at),
        )
        await self._write_event(owner_id, store, event)
        return event

    async def record_sleep(  # noqa: PLR0913
        self,
        sleep_start: datetime,
        sleep_end: datetime,
        duration_hours: float | None = None,
        quality: int = 0,
        at: datetime | None = None,
    ) -> SleepEvent:
        """Log a sleep session and refresh the day's aggregate."""
        owner_id, store = self.session.require_active()
        occurred_at = self._resolve_time(at)
        event = SleepEvent(
            owner_id=owner_id,
            sleep_start=sleep_start,
            sleep_end=sleep_end,
            duration_hours=duration_hours,
            quality=quality,
            occurred_at=occurred_at,
            day=self._day_of(occurred_at),
        )
        await self._write_event(owner_id, store, event)
        return event

    async def get_aggregate(self, day: date | str) -> DailyAggregate:
        """Return the day's aggregate, zero-valued when nothing was logged."""
        owner_id, store = self.session.require_active()
        target = parse_day(day)
        record = await self._read(owner_id, store, DAILY_AGGREGATES, target.isoformat())
        if isinstance(record, DailyAggregate):
            return record
        return DailyAggregate.zeroed(owner_id, target)

    async def get_goals(self) -> Goals:
        """Return the goals aggregates are scored against.

        The cached row wins. Without one, the remote copy is fetched and
        cached; the defaults apply when neither store has goals.
        """
        owner_id, store = self.session.require_active()
        cached = await self._cache(store.get, owner_id, GOALS, GOALS_RECORD_ID)
        if isinstance(cached, Goals):
            return cached
        _, remote = await self._remote_call(
            self.remote.get, remote_path(owner_id, GOALS, GOALS_RECORD_ID)
        )
        if not isinstance(remote, Goals) or remote.owner_id != owner_id:
            return Goals(owner_id=owner_id)
        async with self._locked(owner_id, GOALS):
            current = await self._cache(store.get, owner_id, GOALS, GOALS_RECORD_ID)
            if current is not None:
                return current
            await self._cache(store.put, remote)
        return remote

    async def update_goals(self, goals: Goals) -> Goals:
        """Store new goals for the active owner.

        Today's aggregate, when one exists, is rescored against the new goals.
        """
        owner_id, store = self.session.require_active()
        stored = replace(goals, owner_id=owner_id)
        async with self._locked(owner_id, GOALS):
            status = await self._remote_put(owner_id, stored)
            await self._cache(
                store.put, stored, pending=status is not RemoteStatus.OK
            )
        today = self._day_of(self.clock())
        existing = await self._cache(
            store.get, owner_id, DAILY_AGGREGATES, today.isoformat()
        )
        if existing is not None:
            await self._refresh_aggregate(owner_id, store, today)
        return stored

    async def reset_all_data(self) -> None:
        """Delete every cached record of the owner; remote data is kept.

        The cache is left holding default goals, which later aggregates are
        scored against until the owner edits them again.
        """
        owner_id, store = self.session.require_active()
        async with self._locked(owner_id, GOALS):
            await self._cache(store.delete_all_for_owner, owner_id)
            await self._cache(store.put, Goals(owner_id=owner_id))
        self.channel.publish_zeroed(owner_id)
        _logger.info("Local data reset: owner=%s", owner_id)

    async def purge_remote_data(self) -> None:
        """Delete the owner's remote namespace, as for account deletion.

        Unlike logging calls this surfaces remote failures to the caller.
        """
        owner_id = self.session.require_owner()
        await asyncio.to_thread(self.remote.delete_all_for_owner, owner_id)
        _logger.info("Remote data purged: owner=%s", owner_id)

    async def sync_local_to_remote(self) -> SyncReport:
        """Push pending cache records to the remote store, oldest first.

        Stops at the first remote failure. Safe to cancel and to rerun: every
        push is an upsert keyed by record id. Signing out cancels the push and
        raises ``NoSession``.
        """
        owner_id, store = self.session.require_active()
        task = self.session.spawn(self._sync(owner_id, store))
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise NoSession(f"Session ended during sync: owner={owner_id}") from None

    async def _sync(self, owner_id: str, store: LocalCacheStore) -> SyncReport:
        async with self._sync_lock:
            pending = await self._cache(store.list_pending, owner_id)
            pushed = 0
            for record in pending:
                status = await self._push_pending(owner_id, store, record)
                if status is not RemoteStatus.OK:
                    report = SyncReport(
                        pushed=pushed, remaining=len(pending) - pushed, status=status
                    )
                    _logger.warning(
                        "Sync stopped: owner=%s pushed=%s remaining=%s status=%s",
                        owner_id,
                        report.pushed,
                        report.remaining,
                        status,
                    )
                    return report
                pushed += 1
        if pushed:
            _logger.info("Sync finished: owner=%s pushed=%s", owner_id, pushed)
        return SyncReport(pushed=pushed, remaining=0, status=RemoteStatus.OK)

    async def get_period_summary(
        self, start: date | str, end: date | str
    ) -> PeriodSummary:
        """Return per-day aggregates and averages for an inclusive range."""
        owner_id, store = self.session.require_active()
        first, last = parse_day(start), parse_day(end)
        if last < first:
            raise ValidationError("end must not be before start")
        status, remote = await self._remote_call(
            self.remote.query_by_date_range,
            remote_path(owner_id, DAILY_AGGREGATES),
            first,
            last,
        )
        local = await self._cache(
            store.query_by_date_range, owner_id, DAILY_AGGREGATES, first, last
        )
        pending = {
            record.record_id
            for record in await self._cache(store.list_pending, owner_id)
            if record.collection == DAILY_AGGREGATES
        }
        merged = {
            aggregate.day: aggregate
            for aggregate in remote or []
            if aggregate.owner_id == owner_id
        }
        for aggregate in local:
            if aggregate.day not in merged or aggregate.record_id in pending:
                merged[aggregate.day] = aggregate
        if status is not RemoteStatus.OK:
            _logger.info("Period summary served from cache: owner=%s", owner_id)
        return summarize_period(owner_id, merged.values(), first, last)

    async def get_day_events(self, day: date | str) -> DayEvents:
        """Return the cached raw events of a day."""
        owner_id, store = self.session.require_active()
        target = parse_day(day)
        events = await self._cache(_load_day_events, store, owner_id, target)
        return DayEvents(
            day=target,
            water=[event for event in events if isinstance(event, WaterEvent)],
            steps=[event for event in events if isinstance(event, StepEvent)],
            sleep=[event for event in events if isinstance(event, SleepEvent)],
        )

    def subscribe(self, day: date | str | None = None) -> AggregateSubscription:
        """Subscribe to aggregate changes of a day, today by default."""
        owner_id = self.session.require_owner()
        target = self._day_of(self.clock()) if day is None else parse_day(day)
        return self.channel.subscribe(owner_id, target)

    async def _write_event(
        self, owner_id: str, store: LocalCacheStore, event: Event
    ) -> None:
        status = await self._remote_put(owner_id, event)
        await self._cache(store.put, event, pending=status is not RemoteStatus.OK)
        await self._refresh_aggregate(owner_id, store, event.day)

    async def _refresh_aggregate(
        self, owner_id: str, store: LocalCacheStore, day: date
    ) -> DailyAggregate:
        async with self._locked(owner_id, day):
            events = await self._cache(_load_day_events, store, owner_id, day)
            goals = await self._cache(store.get, owner_id, GOALS, GOALS_RECORD_ID)
            existing = await self._cache(
                store.get, owner_id, DAILY_AGGREGATES, day.isoformat()
            )
            aggregate = recompute(
                owner_id,
                day,
                events,
                goals or Goals(owner_id=owner_id),
                stamp=to_utc(self.clock()),
            )
            if existing is not None and existing.created_at is not None:
                aggregate = replace(aggregate, created_at=existing.created_at)
            status = await self._remote_put(owner_id, aggregate)
            await self._cache(
                store.put, aggregate, pending=status is not RemoteStatus.OK
            )
        self.channel.publish(aggregate)
        return aggregate

    async def _read(
        self, owner_id: str, store: LocalCacheStore, collection: str, key: str
    ) -> Record | None:
        # A pending cache row is newer than anything the remote store holds.
        if not await self._cache(store.is_pending, owner_id, collection, key):
            _, remote = await self._remote_call(
                self.remote.get, remote_path(owner_id, collection, key)
            )
            if remote is not None and remote.owner_id == owner_id:
                return remote
        return await self._cache(store.get, owner_id, collection, key)

    async def _push_pending(
        self, owner_id: str, store: LocalCacheStore, record: Record
    ) -> RemoteStatus:
        if record.collection in EVENT_COLLECTIONS:
            return await self._push(owner_id, store, record)
        if record.collection == DAILY_AGGREGATES:
            # Re-read under the day lock so a concurrent recompute is not lost.
            async with self._locked(owner_id, record.day):
                current = await self._cache(
                    store.get, owner_id, DAILY_AGGREGATES, record.record_id
                )
                if current is None:
                    return RemoteStatus.OK
                return await self._push(owner_id, store, current)
        async with self._locked(owner_id, GOALS):
            current = await self._cache(store.get, owner_id, GOALS, GOALS_RECORD_ID)
            if current is None:
                return RemoteStatus.OK
            return await self._push(owner_id, store, current)

    async def _push(
        self, owner_id: str, store: LocalCacheStore, record: Record
    ) -> RemoteStatus:
        status = await self._remote_put(owner_id, record)
        if status is RemoteStatus.OK:
            await self._cache(
                store.mark_synced, owner_id, record.collection, [record.record_id]
            )
        return status

    async def _remote_put(self, owner_id: str, record: Record) -> RemoteStatus:
        path = remote_path(owner_id, record.collection, record.record_id)
        status, _ = await self._remote_call(self.remote.put, path, record)
        return status

    async def _remote_call(
        self, func: Callable[..., Any], *args: object
    ) -> tuple[RemoteStatus, Any]:
        try:
            result = await asyncio.to_thread(func, *args)
        except Unauthorized as exc:
            self.needs_reauth = True
            _logger.warning("Remote store unauthorized, using cache: %s", exc)
            return RemoteStatus.UNAUTHORIZED, None
        except RemoteStoreError as exc:
            _logger.warning("Remote store unavailable, using cache: %s", exc)
            return RemoteStatus.UNAVAILABLE, None
        self.needs_reauth = False
        return RemoteStatus.OK, result

    async def _cache(  # noqa: ANN202
        self, func: Callable[..., Any], *args: object, **kwargs: object
    ):
        return await asyncio.to_thread(func, *args, **kwargs)

    @asynccontextmanager
    async def _locked(self, owner_id: str, scope: date | str) -> AsyncIterator[None]:
        """Serialize writers of one owner's day aggregate or goals row.

        A lock is dropped once no task holds or waits for it.
        """
        key = (owner_id, scope)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    def _resolve_time(self, at: datetime | None) -> datetime:
        return to_utc(self.clock() if at is None else at)

    def _day_of(self, moment: datetime) -> date:
        return to_utc(moment).astimezone(ZoneInfo(self.timezone_name)).date()


def _load_day_events(store: LocalCacheStore, owner_id: str, day: date) -> list[Event]:
    events: list[Event] = []
    for collection in (WATER_EVENTS, STEP_EVENTS, SLEEP_EVENTS):
        events.extend(store.query_by_date_range(owner_id, collection, day, day))
    return events
