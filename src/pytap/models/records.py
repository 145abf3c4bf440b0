"""Persisted record models returned by the storage layer."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class InventoryStatus(StrEnum):
    ACTIVE = "ACTIVE"
    EMPTY = "EMPTY"
    STANDBY = "STANDBY"


class OrderStatus(StrEnum):
    PENDING = "PENDING"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)


class InventoryRecord(_Record):
    """One keg on one tap, keyed by ``(tap_id, keg_id)``."""

    tap_id: str
    keg_id: str
    beer_name: str
    volume_total_ml: float
    volume_remaining_ml: float
    status: InventoryStatus
    last_updated: datetime


class TelemetrySample(_Record):
    """Append-only keg telemetry row."""

    timestamp: datetime
    keg_id: str
    vol_remaining_ml: float | None = None
    flow_lpm: float | None = None
    temp_beer_c: float | None = None


class UsageBucket(_Record):
    """Consumed volume for one beer within one clock hour."""

    bucket_start: datetime
    beer_name: str
    volume_ml: float


class Order(_Record):
    id: int
    created_at: datetime
    keg_id: str
    beer_name: str
    status: OrderStatus


class DepletionForecast(_Record):
    """Days until a keg runs dry at the trailing average consumption.

    ``days_remaining`` is ``None`` when there is not enough usage data.
    """

    keg_id: str
    beer_name: str
    current_volume_ml: float
    avg_daily_ml: float | None = None
    days_remaining: float | None = None
