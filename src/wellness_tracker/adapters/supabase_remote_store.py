"""Supabase-backed remote store."""

from dataclasses import dataclass
from datetime import date

import httpx
from postgrest import APIError
from supabase import Client

from wellness_tracker.domain.errors import Unauthorized, Unavailable, ValidationError
from wellness_tracker.domain.records import (
    COLLECTIONS,
    DAILY_AGGREGATES,
    GOALS,
    RECORD_TYPES,
    Record,
)
from wellness_tracker.services.stores import RemotePath, RemoteStore

_AUTH_ERROR_CODES = {"PGRST301", "PGRST302", "PGRST303", "42501", "401", "403"}


@dataclass
class SupabaseRemoteStore(RemoteStore):
    """Maps ``owners/{owner}/{collection}/{id}`` onto one table per collection.

    Rows carry ``owner_id`` and ``record_id`` columns next to the record
    fields; every request filters on ``owner_id``.
    """

    client: Client

    def get(self, path: RemotePath) -> Record | None:
        """Return the record at a path, if present."""
        if path.record_id is None:
            raise ValidationError(f"Path does not name a record: {path}")
        response = _execute(
            self.client.table(path.collection)
            .select("*")
            .eq("owner_id", path.owner_id)
            .eq("record_id", path.record_id)
            .limit(1)
        )
        if not response.data:
            return None
        return RECORD_TYPES[path.collection].from_document(response.data[0])

    def put(self, path: RemotePath, record: Record) -> None:
        """Upsert a record keyed by owner and record id."""
        if (
            record.owner_id != path.owner_id
            or record.collection != path.collection
            or record.record_id != path.record_id
        ):
            raise ValidationError(f"Record does not belong at {path}")
        payload = {**record.to_document(), "record_id": record.record_id}
        _execute(
            self.client.table(path.collection).upsert(
                payload, on_conflict="owner_id,record_id"
            )
        )

    def query_by_date_range(
        self, path: RemotePath, start: date, end: date
    ) -> list[Record]:
        """Return records of a collection with a day in [start, end]."""
        if path.collection == GOALS:
            raise ValidationError("goals are not stored per day")
        order = "day" if path.collection == DAILY_AGGREGATES else "occurred_at"
        response = _execute(
            self.client.table(path.collection)
            .select("*")
            .eq("owner_id", path.owner_id)
            .gte("day", start.isoformat())
            .lte("day", end.isoformat())
            .order(order, desc=False)
        )
        record_cls = RECORD_TYPES[path.collection]
        return [record_cls.from_document(row) for row in response.data or []]

    def delete_all_for_owner(self, owner_id: str) -> None:
        """Delete the owner's rows from every collection."""
        for collection in COLLECTIONS:
            _execute(self.client.table(collection).delete().eq("owner_id", owner_id))


def _execute(query):  # noqa: ANN001, ANN202
    try:
        return query.execute()
    except httpx.TransportError as exc:
        raise Unavailable(f"Remote store unreachable: {exc}") from exc
    except APIError as exc:
        if str(exc.code) in _AUTH_ERROR_CODES:
            raise Unauthorized(
                f"Remote store rejected credentials: {exc.message}"
            ) from exc
        raise Unavailable(f"Remote store request failed: {exc.message}") from exc
