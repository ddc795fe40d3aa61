"""Tests for the Supabase remote store."""

from dataclasses import dataclass, field
from datetime import date

import httpx
import pytest
from postgrest import APIError

from wellness_tracker.adapters.supabase_remote_store import SupabaseRemoteStore
from wellness_tracker.domain.errors import Unauthorized, Unavailable, ValidationError
from wellness_tracker.domain.records import (
    COLLECTIONS,
    DAILY_AGGREGATES,
    GOALS,
    GOALS_RECORD_ID,
    WATER_EVENTS,
    DailyAggregate,
    Goals,
    WaterEvent,
)
from wellness_tracker.services.stores import remote_path
from tests.conftest import at


@dataclass
class FakeResponse:
    data: list[dict[str, object]] | None


@dataclass
class FakeTable:
    name: str
    responses: list[list[dict[str, object]]] = field(default_factory=list)
    error: Exception | None = None
    action: str = "select"
    last_payload: object | None = None
    last_conflict: str | None = None
    last_filters: list[tuple[str, str, object]] = field(default_factory=list)

    def select(self, *_args) -> "FakeTable":
        self.action = "select"
        return self

    def upsert(self, payload, on_conflict: str = "") -> "FakeTable":
        self.action = "upsert"
        self.last_payload = payload
        self.last_conflict = on_conflict
        return self

    def delete(self) -> "FakeTable":
        self.action = "delete"
        return self

    def eq(self, column: str, value) -> "FakeTable":  # type: ignore[no-untyped-def]
        self.last_filters.append(("eq", column, value))
        return self

    def gte(self, column: str, value) -> "FakeTable":  # type: ignore[no-untyped-def]
        self.last_filters.append(("gte", column, value))
        return self

    def lte(self, column: str, value) -> "FakeTable":  # type: ignore[no-untyped-def]
        self.last_filters.append(("lte", column, value))
        return self

    def limit(self, _count: int) -> "FakeTable":
        return self

    def order(self, _column: str, desc: bool = False) -> "FakeTable":
        return self

    def execute(self) -> FakeResponse:
        if self.error is not None:
            raise self.error
        data = self.responses.pop(0) if self.responses else []
        return FakeResponse(data=data)


@dataclass
class FakeSupabaseClient:
    tables: dict[str, FakeTable] = field(default_factory=dict)

    def table(self, name: str) -> FakeTable:
        if name not in self.tables:
            self.tables[name] = FakeTable(name=name)
        return self.tables[name]


def test_put_upserts_record_with_owner_and_record_id() -> None:
    client = FakeSupabaseClient()
    store = SupabaseRemoteStore(client)
    event = WaterEvent(owner_id="u1", amount_ml=250, occurred_at=at(8), day="2024-01-01")

    store.put(remote_path("u1", WATER_EVENTS, event.id), event)

    table = client.tables[WATER_EVENTS]
    assert table.action == "upsert"
    assert table.last_conflict == "owner_id,record_id"
    assert table.last_payload["record_id"] == event.id
    assert table.last_payload["owner_id"] == "u1"
    assert table.last_payload["occurred_at"] == "2024-01-01T08:00:00+00:00"


def test_put_rejects_record_outside_its_path() -> None:
    store = SupabaseRemoteStore(FakeSupabaseClient())
    goals = Goals(owner_id="u2")

    with pytest.raises(ValidationError):
        store.put(remote_path("u1", GOALS, GOALS_RECORD_ID), goals)


def test_get_filters_by_owner_and_parses_row() -> None:
    client = FakeSupabaseClient()
    table = client.table(DAILY_AGGREGATES)
    table.responses.append(
        [
            {
                "owner_id": "u1",
                "record_id": "2024-01-01",
                "day": "2024-01-01",
                "total_water_ml": 750,
                "total_steps": 0,
                "total_sleep_hours": 0.0,
                "wellness_score": 11,
                "created_at": "2024-01-01T12:00:00+00:00",
                "updated_at": "2024-01-01T12:00:00+00:00",
            }
        ]
    )
    store = SupabaseRemoteStore(client)

    record = store.get(remote_path("u1", DAILY_AGGREGATES, "2024-01-01"))

    assert isinstance(record, DailyAggregate)
    assert record.total_water_ml == 750
    assert ("eq", "owner_id", "u1") in table.last_filters
    assert ("eq", "record_id", "2024-01-01") in table.last_filters


def test_get_returns_none_when_missing() -> None:
    store = SupabaseRemoteStore(FakeSupabaseClient())

    assert store.get(remote_path("u1", GOALS, GOALS_RECORD_ID)) is None


def test_query_by_date_range_applies_inclusive_bounds() -> None:
    client = FakeSupabaseClient()
    table = client.table(DAILY_AGGREGATES)
    table.responses.append(
        [
            {"owner_id": "u1", "day": "2024-01-01", "total_steps": 100},
            {"owner_id": "u1", "day": "2024-01-02", "total_steps": 200},
        ]
    )
    store = SupabaseRemoteStore(client)

    records = store.query_by_date_range(
        remote_path("u1", DAILY_AGGREGATES), date(2024, 1, 1), date(2024, 1, 2)
    )

    assert [record.total_steps for record in records] == [100, 200]
    assert ("gte", "day", "2024-01-01") in table.last_filters
    assert ("lte", "day", "2024-01-02") in table.last_filters


def test_delete_all_for_owner_covers_every_collection() -> None:
    client = FakeSupabaseClient()
    store = SupabaseRemoteStore(client)

    store.delete_all_for_owner("u1")

    assert set(client.tables) == set(COLLECTIONS)
    for table in client.tables.values():
        assert table.action == "delete"
        assert table.last_filters == [("eq", "owner_id", "u1")]


def test_transport_errors_map_to_unavailable() -> None:
    client = FakeSupabaseClient()
    client.table(GOALS).error = httpx.ConnectError("connection refused")
    store = SupabaseRemoteStore(client)

    with pytest.raises(Unavailable):
        store.get(remote_path("u1", GOALS, GOALS_RECORD_ID))


def test_jwt_errors_map_to_unauthorized() -> None:
    client = FakeSupabaseClient()
    client.table(GOALS).error = APIError(
        {"message": "JWT expired", "code": "PGRST301", "hint": None, "details": None}
    )
    store = SupabaseRemoteStore(client)

    with pytest.raises(Unauthorized):
        store.get(remote_path("u1", GOALS, GOALS_RECORD_ID))


def test_other_api_errors_map_to_unavailable() -> None:
    client = FakeSupabaseClient()
    client.table(GOALS).error = APIError(
        {"message": "timeout", "code": "57014", "hint": None, "details": None}
    )
    store = SupabaseRemoteStore(client)

    with pytest.raises(Unavailable):
        store.put(remote_path("u1", GOALS, GOALS_RECORD_ID), Goals(owner_id="u1"))


def test_remote_path_is_owner_scoped() -> None:
    path = remote_path("u1", WATER_EVENTS, "abc")

    assert str(path) == "owners/u1/water_events/abc"
    with pytest.raises(ValidationError):
        remote_path("u1/../u2", WATER_EVENTS)
    with pytest.raises(ValidationError):
        remote_path("u1", "meals")
