"""Shared test fixtures."""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime

import pytest

from wellness_tracker.adapters.sqlite_cache_store import SqliteCacheStoreFactory
from wellness_tracker.config import Settings
from wellness_tracker.containers import AppContainer
from wellness_tracker.domain.errors import Unauthorized, Unavailable
from wellness_tracker.domain.records import RECORD_TYPES, Record, parse_day
from wellness_tracker.services.observers import AggregateChannel
from wellness_tracker.services.repository import WellnessRepository
from wellness_tracker.services.sessions import SessionLifecycleManager
from wellness_tracker.services.stores import RemotePath, RemoteStore

FIXED_NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
TEST_SERVICE_KEY = (
    "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9."
    "eyJyb2xlIjoic2VydmljZV9yb2xlIn0."
    "c2lnbmF0dXJl"
)


@dataclass
class InMemoryRemoteStore(RemoteStore):
    """In-memory remote store holding JSON documents by path."""

    documents: dict[str, dict[str, object]] = field(default_factory=dict)
    available: bool = True
    authorized: bool = True
    paths: list[str] = field(default_factory=list)
    put_count: int = 0

    def get(self, path: RemotePath) -> Record | None:
        self._check(str(path))
        document = self.documents.get(str(path))
        if document is None:
            return None
        return RECORD_TYPES[path.collection].from_document(document)

    def put(self, path: RemotePath, record: Record) -> None:
        self._check(str(path))
        self.put_count += 1
        self.documents[str(path)] = record.to_document()

    def query_by_date_range(
        self, path: RemotePath, start: date, end: date
    ) -> list[Record]:
        self._check(str(path))
        record_cls = RECORD_TYPES[path.collection]
        records = [
            record_cls.from_document(document)
            for key, document in self.documents.items()
            if key.startswith(f"{path}/")
        ]
        matching = [record for record in records if start <= record.day <= end]
        return sorted(matching, key=lambda record: record.day)

    def delete_all_for_owner(self, owner_id: str) -> None:
        prefix = f"owners/{owner_id}/"
        self._check(prefix)
        for key in [key for key in self.documents if key.startswith(prefix)]:
            del self.documents[key]

    def collection(self, owner_id: str, name: str) -> dict[str, dict[str, object]]:
        prefix = f"owners/{owner_id}/{name}/"
        return {
            key: document
            for key, document in self.documents.items()
            if key.startswith(prefix)
        }

    def _check(self, path: str) -> None:
        self.paths.append(path)
        if not self.available:
            raise Unavailable("remote store offline")
        if not self.authorized:
            raise Unauthorized("session expired")


def at(hour: int, minute: int = 0, day: str = "2024-01-01") -> datetime:
    """Return an aware UTC timestamp on a test day."""
    base = parse_day(day)
    return datetime(base.year, base.month, base.day, hour, minute, tzinfo=UTC)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key=TEST_SERVICE_KEY,
        auth_webhook_token="auth-token",
        cache_dir=tmp_path / "cache",
    )


@pytest.fixture
def remote_store() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


@pytest.fixture
def cache_factory(tmp_path) -> SqliteCacheStoreFactory:
    return SqliteCacheStoreFactory(tmp_path / "cache")


@pytest.fixture
def channel() -> AggregateChannel:
    return AggregateChannel()


@pytest.fixture
def session_manager(
    cache_factory: SqliteCacheStoreFactory, channel: AggregateChannel
) -> SessionLifecycleManager:
    return SessionLifecycleManager(store_factory=cache_factory, channel=channel)


@pytest.fixture
def repository(
    session_manager: SessionLifecycleManager,
    remote_store: InMemoryRemoteStore,
    channel: AggregateChannel,
) -> WellnessRepository:
    return WellnessRepository(
        session=session_manager,
        remote=remote_store,
        channel=channel,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def container(
    settings: Settings,
    session_manager: SessionLifecycleManager,
    repository: WellnessRepository,
    channel: AggregateChannel,
) -> AppContainer:
    session_manager.register_catch_up(repository.sync_local_to_remote)

    async def close_resources() -> None:
        await session_manager.sign_out()

    return AppContainer(
        settings=settings,
        aggregate_channel=channel,
        session_manager=session_manager,
        repository=repository,
        close_resources=close_resources,
    )
