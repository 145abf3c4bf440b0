"""Database access for inventory, telemetry, usage, orders and settings.

Every public method opens its own short session. SQLAlchemy failures are
re-raised as :class:`pytap.exceptions.TapPersistenceError`.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from datetime import UTC, datetime

from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pytap.exceptions import TapPersistenceError
from pytap.models.records import (
    InventoryRecord,
    InventoryStatus,
    Order,
    OrderStatus,
    TelemetrySample,
    UsageBucket,
)
from pytap.storage.schema import Base, InventoryRow, OrderRow, SettingRow, TelemetryRow, UsageHourRow

_logger = logging.getLogger(__name__)


def _to_db(value: datetime) -> datetime:
    """Store timestamps as naive UTC; SQLite keeps no zone information."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _from_db(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC)


def _inventory(row: InventoryRow) -> InventoryRecord:
    return InventoryRecord(
        tap_id=row.tap_id,
        keg_id=row.keg_id,
        beer_name=row.beer_name,
        volume_total_ml=row.volume_total_ml,
        volume_remaining_ml=row.volume_remaining_ml,
        status=InventoryStatus(row.status),
        last_updated=_from_db(row.last_updated),
    )


def _telemetry(row: TelemetryRow) -> TelemetrySample:
    return TelemetrySample(
        timestamp=_from_db(row.timestamp),
        keg_id=row.keg_id,
        vol_remaining_ml=row.vol_remaining_ml,
        flow_lpm=row.flow_lpm,
        temp_beer_c=row.temp_beer_c,
    )


def _order(row: OrderRow) -> Order:
    return Order(
        id=row.id,
        created_at=_from_db(row.created_at),
        keg_id=row.keg_id,
        beer_name=row.beer_name,
        status=OrderStatus(row.status),
    )


def create_db_engine(db_url: str) -> Engine:
    """Engine for *db_url*; in-memory SQLite shares one connection across sessions."""
    if db_url in {"sqlite://", "sqlite:///:memory:"}:
        return create_engine(
            db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if db_url.startswith("sqlite"):
        return create_engine(db_url, connect_args={"check_same_thread": False})
    return create_engine(db_url)


class TapRepository:
    """Persistence gateway used exclusively by the aggregator and analytics."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._sessions = sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, db_url: str) -> TapRepository:
        repo = cls(create_db_engine(db_url))
        repo.create_schema()
        return repo

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise TapPersistenceError(f"Schema creation failed: {exc}") from exc

    def dispose(self) -> None:
        self._engine.dispose()

    @contextlib.contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self._sessions.begin() as session:
                yield session
        except SQLAlchemyError as exc:
            raise TapPersistenceError(f"Database operation failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def upsert_inventory(
        self,
        *,
        tap_id: str,
        keg_id: str,
        beer_name: str,
        volume_total_ml: float,
        volume_remaining_ml: float,
        status: InventoryStatus,
        now: datetime,
    ) -> None:
        """Replace the ``(tap_id, keg_id)`` row."""
        values = {
            "tap_id": tap_id,
            "keg_id": keg_id,
            "beer_name": beer_name,
            "volume_total_ml": volume_total_ml,
            "volume_remaining_ml": volume_remaining_ml,
            "status": status.value,
            "last_updated": _to_db(now),
        }
        stmt = sqlite_insert(InventoryRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[InventoryRow.tap_id, InventoryRow.keg_id],
            set_={key: stmt.excluded[key] for key in values if key not in {"tap_id", "keg_id"}},
        )
        with self._session() as session:
            session.execute(stmt)

    def delete_inventory_for_tap(self, tap_id: str) -> int:
        with self._session() as session:
            result = session.execute(delete(InventoryRow).where(InventoryRow.tap_id == tap_id))
            count = int(result.rowcount or 0)
        _logger.info("Deleted %s inventory rows for tap %s", count, tap_id)
        return count

    def list_inventory(self) -> list[InventoryRecord]:
        stmt = select(InventoryRow).order_by(InventoryRow.beer_name, InventoryRow.keg_id)
        with self._session() as session:
            return [_inventory(row) for row in session.scalars(stmt)]

    def find_inventory(self, keg_id: str, tap_id: str | None = None) -> InventoryRecord | None:
        stmt = select(InventoryRow).where(InventoryRow.keg_id == keg_id)
        if tap_id is not None:
            stmt = stmt.where(InventoryRow.tap_id == tap_id)
        stmt = stmt.order_by(InventoryRow.last_updated.desc()).limit(1)
        with self._session() as session:
            row = session.scalars(stmt).first()
            return _inventory(row) if row is not None else None

    def beer_names(self) -> list[str]:
        stmt = select(InventoryRow.beer_name).distinct().order_by(InventoryRow.beer_name)
        with self._session() as session:
            return list(session.scalars(stmt))

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def append_telemetry(self, sample: TelemetrySample) -> None:
        row = TelemetryRow(
            timestamp=_to_db(sample.timestamp),
            keg_id=sample.keg_id,
            vol_remaining_ml=sample.vol_remaining_ml,
            flow_lpm=sample.flow_lpm,
            temp_beer_c=sample.temp_beer_c,
        )
        with self._session() as session:
            session.add(row)

    def telemetry_since(self, since: datetime) -> list[TelemetrySample]:
        """Samples strictly newer than *since*, oldest first."""
        stmt = (
            select(TelemetryRow)
            .where(TelemetryRow.timestamp > _to_db(since))
            .order_by(TelemetryRow.timestamp, TelemetryRow.id)
        )
        with self._session() as session:
            return [_telemetry(row) for row in session.scalars(stmt)]

    def recent_telemetry(self, limit: int) -> list[TelemetrySample]:
        stmt = select(TelemetryRow).order_by(TelemetryRow.timestamp.desc(), TelemetryRow.id.desc()).limit(limit)
        with self._session() as session:
            return [_telemetry(row) for row in session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Hourly usage
    # ------------------------------------------------------------------

    def add_usage(self, bucket_start: datetime, beer_name: str, volume_ml: float) -> None:
        """Add *volume_ml* to the bucket; non-positive volumes are ignored."""
        if volume_ml <= 0:
            return
        stmt = sqlite_insert(UsageHourRow).values(
            bucket_start=_to_db(bucket_start),
            beer_name=beer_name,
            volume_ml=volume_ml,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UsageHourRow.bucket_start, UsageHourRow.beer_name],
            set_={"volume_ml": UsageHourRow.volume_ml + stmt.excluded.volume_ml},
        )
        with self._session() as session:
            session.execute(stmt)

    def usage_between(self, beer_name: str, start: datetime, end: datetime) -> list[UsageBucket]:
        stmt = (
            select(UsageHourRow)
            .where(
                UsageHourRow.beer_name == beer_name,
                UsageHourRow.bucket_start >= _to_db(start),
                UsageHourRow.bucket_start <= _to_db(end),
            )
            .order_by(UsageHourRow.bucket_start)
        )
        with self._session() as session:
            return [
                UsageBucket(
                    bucket_start=_from_db(row.bucket_start),
                    beer_name=row.beer_name,
                    volume_ml=row.volume_ml,
                )
                for row in session.scalars(stmt)
            ]

    def usage_total(self, beer_name: str, since: datetime) -> float:
        """Sum of buckets for *beer_name* starting strictly after *since*."""
        stmt = select(func.coalesce(func.sum(UsageHourRow.volume_ml), 0.0)).where(
            UsageHourRow.beer_name == beer_name,
            UsageHourRow.bucket_start > _to_db(since),
        )
        with self._session() as session:
            return float(session.scalar(stmt) or 0.0)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def create_order_if_absent(self, keg_id: str, beer_name: str, now: datetime) -> Order | None:
        """Create a PENDING order unless one is already pending for *keg_id*."""
        with self._session() as session:
            existing = session.scalars(
                select(OrderRow.id).where(
                    OrderRow.keg_id == keg_id,
                    OrderRow.status == OrderStatus.PENDING.value,
                )
            ).first()
            if existing is not None:
                return None
            row = OrderRow(
                created_at=_to_db(now),
                keg_id=keg_id,
                beer_name=beer_name,
                status=OrderStatus.PENDING.value,
            )
            session.add(row)
            session.flush()
            order = _order(row)
        _logger.info("Created auto-order #%s for %s (%s)", order.id, beer_name, keg_id)
        return order

    def list_orders(self) -> list[Order]:
        stmt = select(OrderRow).order_by(OrderRow.created_at.desc(), OrderRow.id.desc())
        with self._session() as session:
            return [_order(row) for row in session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_setting(self, key: str) -> str | None:
        with self._session() as session:
            row = session.get(SettingRow, key)
            return row.value if row is not None else None

    def set_setting(self, key: str, value: str) -> None:
        stmt = sqlite_insert(SettingRow).values(key=key, value=value)
        stmt = stmt.on_conflict_do_update(index_elements=[SettingRow.key], set_={"value": stmt.excluded.value})
        with self._session() as session:
            session.execute(stmt)
