"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from wellness_tracker.adapters.sqlite_cache_store import SqliteCacheStoreFactory
from wellness_tracker.adapters.supabase_remote_store import SupabaseRemoteStore
from wellness_tracker.config import Settings, parse_timezone
from wellness_tracker.services.observers import AggregateChannel
from wellness_tracker.services.repository import WellnessRepository
from wellness_tracker.services.sessions import SessionLifecycleManager


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    aggregate_channel: AggregateChannel
    session_manager: SessionLifecycleManager
    repository: WellnessRepository
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    aggregate_channel = AggregateChannel()
    session_manager = SessionLifecycleManager(
        store_factory=SqliteCacheStoreFactory(resolved_settings.cache_dir),
        channel=aggregate_channel,
    )
    repository = WellnessRepository(
        session=session_manager,
        remote=SupabaseRemoteStore(supabase_client),
        channel=aggregate_channel,
        timezone_name=parse_timezone(resolved_settings.timezone),
    )
    session_manager.register_catch_up(repository.sync_local_to_remote)

    async def close_resources() -> None:
        await session_manager.sign_out()

    return AppContainer(
        settings=resolved_settings,
        aggregate_channel=aggregate_channel,
        session_manager=session_manager,
        repository=repository,
        close_resources=close_resources,
    )
