"""SQLite cache store backed by SQLAlchemy, one database file per owner."""

import hashlib
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, fields
from datetime import UTC, date, datetime
from pathlib import Path

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Engine,
    Float,
    Integer,
    String,
    create_engine,
    delete,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column
from sqlalchemy.types import TypeDecorator

from wellness_tracker.domain.errors import PersistenceError, ValidationError
from wellness_tracker.domain.records import (
    DAILY_AGGREGATES,
    EVENT_COLLECTIONS,
    GOALS,
    GOALS_RECORD_ID,
    RECORD_TYPES,
    SLEEP_EVENTS,
    STEP_EVENTS,
    WATER_EVENTS,
    Record,
    parse_day,
)
from wellness_tracker.services.stores import CacheStoreFactory, LocalCacheStore

_logger = logging.getLogger(__name__)


class UtcDateTime(TypeDecorator):
    """Stores aware datetimes as naive UTC and restores the UTC tzinfo."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):  # noqa: ANN001, ANN201, ARG002
        if value is None:
            return None
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value, dialect):  # noqa: ANN001, ANN201, ARG002
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


class Base(DeclarativeBase):
    pass


class DailyAggregateRow(Base):
    """One row per owner and day; overwritten on every recompute."""

    __tablename__ = DAILY_AGGREGATES

    owner_id: Mapped[str] = mapped_column(String, primary_key=True)
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    total_water_ml: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_steps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_sleep_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    wellness_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    pending_sync: Mapped[bool] = mapped_column(Boolean, nullable=False, index=True)


class WaterEventRow(Base):
    __tablename__ = WATER_EVENTS

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    amount_ml: Mapped[int] = mapped_column(Integer, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    day: Mapped[date] = mapped_column(Date, index=True, nullable=False)
    pending_sync: Mapped[bool] = mapped_column(Boolean, nullable=False, index=True)


class StepEventRow(Base):
    __tablename__ = STEP_EVENTS

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    steps: Mapped[int] = mapped_column(Integer, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    day: Mapped[date] = mapped_column(Date, index=True, nullable=False)
    pending_sync: Mapped[bool] = mapped_column(Boolean, nullable=False, index=True)


class SleepEventRow(Base):
    __tablename__ = SLEEP_EVENTS

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    sleep_start: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    sleep_end: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    duration_hours: Mapped[float] = mapped_column(Float, nullable=False)
    quality: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    occurred_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    day: Mapped[date] = mapped_column(Date, index=True, nullable=False)
    pending_sync: Mapped[bool] = mapped_column(Boolean, nullable=False, index=True)


class GoalsRow(Base):
    """Exactly one live row per owner."""

    __tablename__ = GOALS

    owner_id: Mapped[str] = mapped_column(String, primary_key=True)
    daily_steps_target: Mapped[int] = mapped_column(Integer, nullable=False)
    daily_water_target_ml: Mapped[int] = mapped_column(Integer, nullable=False)
    daily_sleep_target_hours: Mapped[float] = mapped_column(Float, nullable=False)
    weekly_exercise_minutes_target: Mapped[int] = mapped_column(
        Integer, nullable=False
    )
    pending_sync: Mapped[bool] = mapped_column(Boolean, nullable=False, index=True)


_ROWS: dict[str, type[Base]] = {
    DAILY_AGGREGATES: DailyAggregateRow,
    WATER_EVENTS: WaterEventRow,
    STEP_EVENTS: StepEventRow,
    SLEEP_EVENTS: SleepEventRow,
    GOALS: GoalsRow,
}


def database_filename(owner_id: str) -> str:
    """Return the cache file name of an owner.

    Hashing keeps distinct owner ids in distinct files regardless of the
    characters they contain.
    """
    digest = hashlib.sha256(owner_id.encode("utf-8")).hexdigest()[:32]
    return f"wellness_{digest}.db"


@dataclass
class SqliteCacheStore(LocalCacheStore):
    """Cache store for a single owner living in its own SQLite file."""

    owner_id: str
    engine: Engine
    path: Path
    _closed: bool = field(default=False, init=False)

    def get(self, owner_id: str, collection: str, key: str) -> Record | None:
        """Return a cached record, or None when it is not cached."""
        self._check_owner(owner_id)
        row_cls = _row_type(collection)
        stmt = select(row_cls).where(
            row_cls.owner_id == owner_id, *_key_clause(row_cls, collection, key)
        )
        with self._session() as session:
            row = session.execute(stmt).scalar_one_or_none()
            return _to_record(collection, row) if row is not None else None

    def put(self, record: Record, *, pending: bool = False) -> None:
        """Upsert a record by its primary key."""
        self._check_owner(record.owner_id)
        row_cls = _row_type(record.collection)
        values = {item.name: getattr(record, item.name) for item in fields(record)}
        with self._session() as session:
            session.merge(row_cls(**values, pending_sync=pending))
            session.commit()

    def query_by_date_range(
        self, owner_id: str, collection: str, start: date, end: date
    ) -> list[Record]:
        """Return records with a day in [start, end], oldest first."""
        self._check_owner(owner_id)
        if collection == GOALS:
            raise ValidationError("goals are not stored per day")
        row_cls = _row_type(collection)
        order = row_cls.day if collection == DAILY_AGGREGATES else row_cls.occurred_at
        stmt = (
            select(row_cls)
            .where(
                row_cls.owner_id == owner_id,
                row_cls.day >= parse_day(start),
                row_cls.day <= parse_day(end),
            )
            .order_by(order)
        )
        with self._session() as session:
            rows = session.execute(stmt).scalars().all()
            return [_to_record(collection, row) for row in rows]

    def delete_all_for_owner(self, owner_id: str) -> None:
        """Delete every family of records of the owner."""
        self._check_owner(owner_id)
        with self._session() as session:
            for row_cls in _ROWS.values():
                session.execute(delete(row_cls).where(row_cls.owner_id == owner_id))
            session.commit()
        _logger.info("Cleared local cache: owner=%s", owner_id)

    def is_pending(self, owner_id: str, collection: str, key: str) -> bool:
        """Return True when the cached record has not reached the remote store."""
        self._check_owner(owner_id)
        row_cls = _row_type(collection)
        stmt = select(row_cls.pending_sync).where(
            row_cls.owner_id == owner_id, *_key_clause(row_cls, collection, key)
        )
        with self._session() as session:
            return bool(session.execute(stmt).scalar_one_or_none())

    def list_pending(self, owner_id: str) -> list[Record]:
        """Return unsynced events by occurrence, then aggregates, then goals."""
        self._check_owner(owner_id)
        events: list[Record] = []
        tail: list[Record] = []
        with self._session() as session:
            for collection, row_cls in _ROWS.items():
                stmt = select(row_cls).where(
                    row_cls.owner_id == owner_id, row_cls.pending_sync.is_(True)
                )
                if collection == DAILY_AGGREGATES:
                    stmt = stmt.order_by(row_cls.day)
                records = [
                    _to_record(collection, row)
                    for row in session.execute(stmt).scalars().all()
                ]
                if collection in EVENT_COLLECTIONS:
                    events.extend(records)
                else:
                    tail.extend(records)
        events.sort(key=lambda event: event.occurred_at)
        aggregates = [
            record for record in tail if record.collection == DAILY_AGGREGATES
        ]
        goals = [record for record in tail if record.collection == GOALS]
        return [*events, *aggregates, *goals]

    def mark_synced(
        self, owner_id: str, collection: str, record_ids: list[str]
    ) -> None:
        """Clear the pending flag of the given records."""
        self._check_owner(owner_id)
        if not record_ids:
            return
        row_cls = _row_type(collection)
        with self._session() as session:
            for record_id in record_ids:
                session.execute(
                    update(row_cls)
                    .where(
                        row_cls.owner_id == owner_id,
                        *_key_clause(row_cls, collection, record_id),
                    )
                    .values(pending_sync=False)
                )
            session.commit()

    def close(self) -> None:
        """Dispose of the engine; later calls fail."""
        if self._closed:
            return
        self.engine.dispose()
        self._closed = True
        _logger.info("Closed cache store: owner=%s", self.owner_id)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._closed:
            raise PersistenceError(f"Cache store for {self.owner_id} is closed")
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                yield session
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Cache store failure: {exc}") from exc

    def _check_owner(self, owner_id: str) -> None:
        if owner_id != self.owner_id:
            raise PersistenceError(
                f"Cache store for {self.owner_id} cannot serve owner {owner_id}"
            )


@dataclass
class SqliteCacheStoreFactory(CacheStoreFactory):
    """Opens per-owner SQLite files under a cache directory."""

    cache_dir: Path

    def open(self, owner_id: str) -> SqliteCacheStore:
        """Open the owner's cache file, creating tables on first use."""
        if not owner_id or not owner_id.strip():
            raise ValidationError("A cache store needs an owner id")
        path = Path(self.cache_dir) / database_filename(owner_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                f"sqlite:///{path}", connect_args={"check_same_thread": False}
            )
            Base.metadata.create_all(engine)
        except (OSError, SQLAlchemyError) as exc:
            raise PersistenceError(f"Cannot open cache store: {exc}") from exc
        _logger.info("Opened cache store: owner=%s path=%s", owner_id, path)
        return SqliteCacheStore(owner_id=owner_id, engine=engine, path=path)


def _row_type(collection: str) -> type[Base]:
    row_cls = _ROWS.get(collection)
    if row_cls is None:
        raise ValidationError(f"Unknown collection: {collection!r}")
    return row_cls


def _key_clause(row_cls, collection: str, key: str) -> list:  # noqa: ANN001
    if collection == DAILY_AGGREGATES:
        return [row_cls.day == parse_day(key)]
    if collection == GOALS:
        if key != GOALS_RECORD_ID:
            raise ValidationError(f"Invalid goals key: {key!r}")
        return []
    return [row_cls.id == key]


def _to_record(collection: str, row: Base) -> Record:
    record_cls = RECORD_TYPES[collection]
    return record_cls(
        **{item.name: getattr(row, item.name) for item in fields(record_cls)}
    )
