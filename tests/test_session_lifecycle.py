"""Tests for the owner session lifecycle."""

import asyncio

import pytest

from wellness_tracker.adapters.sqlite_cache_store import SqliteCacheStoreFactory
from wellness_tracker.domain.errors import (
    NoSession,
    PersistenceError,
    SessionTransitionError,
    ValidationError,
)
from wellness_tracker.domain.records import WATER_EVENTS
from wellness_tracker.services.repository import WellnessRepository
from wellness_tracker.services.sessions import SessionLifecycleManager, SessionState
from tests.conftest import InMemoryRemoteStore, at


def test_manager_starts_anonymous(session_manager: SessionLifecycleManager) -> None:
    assert session_manager.state is SessionState.ANONYMOUS
    with pytest.raises(NoSession):
        session_manager.require_active()


def test_sign_in_opens_store_and_sign_out_closes_it(
    session_manager: SessionLifecycleManager,
) -> None:
    async def scenario() -> None:
        await session_manager.sign_in("u1")
        owner_id, store = session_manager.require_active()
        assert owner_id == "u1"
        assert session_manager.state is SessionState.ACTIVE

        await session_manager.sign_out()
        assert session_manager.state is SessionState.ANONYMOUS
        assert session_manager.owner_id is None
        with pytest.raises(PersistenceError):
            store.list_pending("u1")

    asyncio.run(scenario())


def test_repeated_sign_in_for_same_owner_is_noop(
    session_manager: SessionLifecycleManager,
) -> None:
    async def scenario() -> None:
        await session_manager.sign_in("u1")
        _, store = session_manager.require_active()
        await session_manager.sign_in("u1")
        assert session_manager.require_active()[1] is store
        await session_manager.sign_out()

    asyncio.run(scenario())


def test_direct_owner_switch_is_rejected(
    session_manager: SessionLifecycleManager,
) -> None:
    async def scenario() -> None:
        await session_manager.sign_in("u1")
        with pytest.raises(SessionTransitionError):
            await session_manager.sign_in("u2")
        assert session_manager.owner_id == "u1"
        await session_manager.sign_out()

    asyncio.run(scenario())


def test_session_signal_switches_owner_through_anonymous(
    session_manager: SessionLifecycleManager,
) -> None:
    async def scenario() -> None:
        await session_manager.on_session_changed("u1")
        _, first_store = session_manager.require_active()

        await session_manager.on_session_changed("u2")
        owner_id, second_store = session_manager.require_active()
        assert owner_id == "u2"
        assert second_store is not first_store
        with pytest.raises(PersistenceError):
            first_store.list_pending("u1")

        await session_manager.on_session_changed(None)
        assert session_manager.state is SessionState.ANONYMOUS

    asyncio.run(scenario())


def test_sign_in_requires_owner(session_manager: SessionLifecycleManager) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(session_manager.sign_in("  "))
    assert session_manager.state is SessionState.ANONYMOUS


def test_sign_in_rejects_owner_with_path_separator(
    session_manager: SessionLifecycleManager,
) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(session_manager.sign_in("u1/../u2"))
    assert session_manager.state is SessionState.ANONYMOUS
    assert session_manager.owner_id is None


def test_failed_store_open_returns_to_anonymous(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    manager = SessionLifecycleManager(store_factory=SqliteCacheStoreFactory(blocker))

    with pytest.raises(PersistenceError):
        asyncio.run(manager.sign_in("u1"))
    assert manager.state is SessionState.ANONYMOUS


def test_sign_out_when_anonymous_is_noop(
    session_manager: SessionLifecycleManager,
) -> None:
    asyncio.run(session_manager.sign_out())

    assert session_manager.state is SessionState.ANONYMOUS


def test_catch_up_sync_pushes_records_left_offline(
    session_manager: SessionLifecycleManager,
    repository: WellnessRepository,
    remote_store: InMemoryRemoteStore,
) -> None:
    session_manager.register_catch_up(repository.sync_local_to_remote)

    async def scenario() -> None:
        await session_manager.sign_in("u1")
        await session_manager.wait_for_catch_up()
        remote_store.available = False
        event = await repository.record_water(300, at=at(9))
        await session_manager.sign_out()

        remote_store.available = True
        await session_manager.sign_in("u1")
        await session_manager.wait_for_catch_up()

        assert f"owners/u1/{WATER_EVENTS}/{event.id}" in remote_store.documents
        _, store = session_manager.require_active()
        assert store.list_pending("u1") == []
        await session_manager.sign_out()

    asyncio.run(scenario())


def test_catch_up_failure_keeps_session_active(
    session_manager: SessionLifecycleManager,
) -> None:
    async def failing_sync() -> None:
        raise RuntimeError("remote exploded")

    session_manager.register_catch_up(failing_sync)

    async def scenario() -> None:
        await session_manager.sign_in("u1")
        await session_manager.wait_for_catch_up()
        assert session_manager.state is SessionState.ACTIVE
        await session_manager.sign_out()

    asyncio.run(scenario())


def test_sign_out_cancels_running_catch_up(
    session_manager: SessionLifecycleManager,
) -> None:
    started = asyncio.Event()
    cancelled = []

    async def blocking_sync() -> None:
        started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.append(True)
            raise

    session_manager.register_catch_up(blocking_sync)

    async def scenario() -> None:
        await session_manager.sign_in("u1")
        await started.wait()
        await session_manager.sign_out()

    asyncio.run(scenario())

    assert cancelled == [True]
    assert session_manager.state is SessionState.ANONYMOUS


def test_sign_out_cancels_spawned_tasks(
    session_manager: SessionLifecycleManager,
) -> None:
    async def scenario() -> asyncio.Task:
        await session_manager.sign_in("u1")
        started = asyncio.Event()

        async def work() -> None:
            started.set()
            await asyncio.Event().wait()

        task = session_manager.spawn(work())
        await started.wait()
        await session_manager.sign_out()
        return task

    task = asyncio.run(scenario())

    assert task.cancelled()
    assert session_manager._tasks == set()


def test_finished_spawned_tasks_are_forgotten(
    session_manager: SessionLifecycleManager,
) -> None:
    async def scenario() -> int:
        await session_manager.sign_in("u1")

        async def work() -> int:
            return 7

        result = await session_manager.spawn(work())
        await asyncio.sleep(0)
        return result

    assert asyncio.run(scenario()) == 7
    assert session_manager._tasks == set()
