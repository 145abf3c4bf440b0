"""SQLAlchemy table definitions."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class InventoryRow(Base):
    """Latest known state of a keg on a tap; replaced on every status message."""

    __tablename__ = "inventory"

    tap_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    keg_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    beer_name: Mapped[str] = mapped_column(String(128), nullable=False)
    volume_total_ml: Mapped[float] = mapped_column(Float, nullable=False)
    volume_remaining_ml: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class TelemetryRow(Base):
    """Append-only sample log; basis of the efficiency metric."""

    __tablename__ = "telemetry"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    keg_id: Mapped[str] = mapped_column(String(64), nullable=False)
    vol_remaining_ml: Mapped[float | None] = mapped_column(Float, nullable=True)
    flow_lpm: Mapped[float | None] = mapped_column(Float, nullable=True)
    temp_beer_c: Mapped[float | None] = mapped_column(Float, nullable=True)


class UsageHourRow(Base):
    """Additive per-beer consumption for one clock hour."""

    __tablename__ = "usage_hourly"

    bucket_start: Mapped[datetime] = mapped_column(DateTime, primary_key=True)
    beer_name: Mapped[str] = mapped_column(String(128), primary_key=True)
    volume_ml: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)


class OrderRow(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    keg_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    beer_name: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)


class SettingRow(Base):
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(String(512), nullable=False)
