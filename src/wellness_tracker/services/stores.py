"""Storage ports for the local cache and the remote store."""

from dataclasses import dataclass
from datetime import date
from typing import Protocol

from wellness_tracker.domain.errors import ValidationError
from wellness_tracker.domain.records import COLLECTIONS, Record


@dataclass(frozen=True)
class RemotePath:
    """Address of a remote record: ``owners/{owner_id}/{collection}/{record_id}``."""

    owner_id: str
    collection: str
    record_id: str | None = None

    def __str__(self) -> str:
        base = f"owners/{self.owner_id}/{self.collection}"
        return base if self.record_id is None else f"{base}/{self.record_id}"


def remote_path(
    owner_id: str, collection: str, record_id: str | None = None
) -> RemotePath:
    """Build a validated owner-scoped remote path."""
    if not owner_id or "/" in owner_id:
        raise ValidationError(f"Invalid owner id for remote path: {owner_id!r}")
    if collection not in COLLECTIONS:
        raise ValidationError(f"Unknown collection: {collection!r}")
    if record_id is not None and (not record_id or "/" in record_id):
        raise ValidationError(f"Invalid record id: {record_id!r}")
    return RemotePath(owner_id=owner_id, collection=collection, record_id=record_id)


class LocalCacheStore(Protocol):
    """Per-owner offline cache.

    A store is opened for exactly one owner and refuses to read or write
    another owner's records.
    """

    owner_id: str

    def get(self, owner_id: str, collection: str, key: str) -> Record | None:
        """Return a cached record, or None when it is not cached."""

    def put(self, record: Record, *, pending: bool = False) -> None:
        """Upsert a record, flagging it when the remote copy is not confirmed."""

    def query_by_date_range(
        self, owner_id: str, collection: str, start: date, end: date
    ) -> list[Record]:
        """Return records of a collection whose day lies in [start, end]."""

    def delete_all_for_owner(self, owner_id: str) -> None:
        """Delete every cached record of the owner."""

    def is_pending(self, owner_id: str, collection: str, key: str) -> bool:
        """Return True when the cached record is newer than its remote copy."""

    def list_pending(self, owner_id: str) -> list[Record]:
        """Return records whose remote write is still pending."""

    def mark_synced(
        self, owner_id: str, collection: str, record_ids: list[str]
    ) -> None:
        """Clear the pending flag of the given records."""

    def close(self) -> None:
        """Release the underlying storage handle."""


class CacheStoreFactory(Protocol):
    """Opens the cache store of one owner."""

    def open(self, owner_id: str) -> LocalCacheStore:
        """Open (creating when needed) the owner's cache store."""


class RemoteStore(Protocol):
    """Authoritative network-backed store addressed by owner-scoped paths.

    Implementations raise ``Unavailable`` or ``Unauthorized`` on failure.
    """

    def get(self, path: RemotePath) -> Record | None:
        """Return the record at a path, or None when absent."""

    def put(self, path: RemotePath, record: Record) -> None:
        """Upsert the record at a path."""

    def query_by_date_range(
        self, path: RemotePath, start: date, end: date
    ) -> list[Record]:
        """Return records of the collection path whose day lies in [start, end]."""

    def delete_all_for_owner(self, owner_id: str) -> None:
        """Delete every remote record of the owner."""
