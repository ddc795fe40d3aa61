"""Owner session lifecycle and ownership of the local cache handle."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, TypeVar

from wellness_tracker.domain.errors import (
    NoSession,
    PersistenceError,
    SessionTransitionError,
    ValidationError,
)
from wellness_tracker.services.observers import AggregateChannel
from wellness_tracker.services.stores import CacheStoreFactory, LocalCacheStore

_logger = logging.getLogger(__name__)

CatchUpSync = Callable[[], Awaitable[object]]

T = TypeVar("T")


class SessionState(StrEnum):
    """States of the owner session."""

    ANONYMOUS = "anonymous"
    TRANSITIONING = "transitioning"
    ACTIVE = "active"


@dataclass
class SessionLifecycleManager:
    """State machine reacting to sign-in and sign-out signals.

    It is the only component that opens or closes cache stores, and it holds
    at most one open store at a time. Switching owners always passes through
    the anonymous state.
    """

    store_factory: CacheStoreFactory
    channel: AggregateChannel | None = None
    state: SessionState = SessionState.ANONYMOUS
    owner_id: str | None = None
    _store: LocalCacheStore | None = field(default=None, repr=False)
    _catch_up: CatchUpSync | None = field(default=None, repr=False)
    _catch_up_task: asyncio.Task | None = field(default=None, repr=False)
    _tasks: set[asyncio.Task] = field(default_factory=set, repr=False)

    def register_catch_up(self, callback: CatchUpSync) -> None:
        """Set the coroutine run once after every sign-in."""
        self._catch_up = callback

    async def on_session_changed(self, owner_id: str | None) -> None:
        """Apply the authentication provider's session signal."""
        if owner_id is None:
            await self.sign_out()
            return
        if self.state is SessionState.ACTIVE and self.owner_id != owner_id:
            await self.sign_out()
        await self.sign_in(owner_id)

    async def sign_in(self, owner_id: str) -> None:
        """Open the owner's cache store and schedule the catch-up sync."""
        if not owner_id or not owner_id.strip():
            raise ValidationError("owner_id is required to sign in")
        if "/" in owner_id:
            raise ValidationError(f"owner_id must not contain '/': {owner_id!r}")
        if self.state is SessionState.ACTIVE:
            if self.owner_id == owner_id:
                return
            raise SessionTransitionError(
                f"Owner {self.owner_id} is active; sign out before switching owners"
            )
        if self.state is SessionState.TRANSITIONING:
            raise SessionTransitionError("A session change is already in progress")

        self.state = SessionState.TRANSITIONING
        try:
            store = await asyncio.to_thread(self._open_store, owner_id)
        except (PersistenceError, ValidationError):
            self.state = SessionState.ANONYMOUS
            raise
        self._store = store
        self.owner_id = owner_id
        self.state = SessionState.ACTIVE
        _logger.info("Session active: owner=%s", owner_id)
        self._schedule_catch_up(owner_id)

    async def sign_out(self) -> None:
        """Cancel running syncs and release the owner's cache store."""
        if self.state is SessionState.ANONYMOUS:
            return
        if self.state is SessionState.TRANSITIONING:
            raise SessionTransitionError("A session change is already in progress")

        self.state = SessionState.TRANSITIONING
        owner_id = self.owner_id
        store = self._store
        try:
            await self._cancel_catch_up()
            await self._cancel_tasks()
            self._store = None
            self.owner_id = None
            if store is not None:
                await asyncio.to_thread(store.close)
        finally:
            self.state = SessionState.ANONYMOUS
        if self.channel is not None and owner_id is not None:
            self.channel.forget_owner(owner_id)
        _logger.info("Session ended: owner=%s", owner_id)

    def require_owner(self) -> str:
        """Return the active owner id or raise ``NoSession``."""
        return self.require_active()[0]

    def require_active(self) -> tuple[str, LocalCacheStore]:
        """Return the active owner id and its cache store."""
        if (
            self.state is not SessionState.ACTIVE
            or self.owner_id is None
            or self._store is None
        ):
            raise NoSession("No active owner session")
        return self.owner_id, self._store

    def spawn(self, coro: Coroutine[Any, Any, T]) -> "asyncio.Task[T]":
        """Run work bound to the current session; sign-out cancels it."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_for_catch_up(self) -> None:
        """Wait for the catch-up sync scheduled by the last sign-in."""
        task = self._catch_up_task
        if task is not None:
            await task

    def _open_store(self, owner_id: str) -> LocalCacheStore:
        if self._store is not None:
            _logger.warning(
                "Closing stale cache store: owner=%s", self._store.owner_id
            )
            self._store.close()
            self._store = None
        return self.store_factory.open(owner_id)

    def _schedule_catch_up(self, owner_id: str) -> None:
        if self._catch_up is None:
            return
        self._catch_up_task = asyncio.create_task(self._run_catch_up(owner_id))

    async def _run_catch_up(self, owner_id: str) -> None:
        if self._catch_up is None:
            return
        try:
            result = await self._catch_up()
        except asyncio.CancelledError:
            _logger.info("Catch-up sync cancelled: owner=%s", owner_id)
            raise
        except Exception:
            _logger.exception(
                "Catch-up sync failed, retrying at next sign-in: owner=%s", owner_id
            )
            return
        _logger.info("Catch-up sync finished: owner=%s result=%s", owner_id, result)

    async def _cancel_catch_up(self) -> None:
        task = self._catch_up_task
        self._catch_up_task = None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _cancel_tasks(self) -> None:
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            _logger.info("Cancelled session tasks: count=%s", len(tasks))
