"""Notifications fanned out to live viewers.

Every outbound change produced by the aggregator is expressed as one of
these; viewers receive them in the order they were emitted.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class NotificationKind(StrEnum):
    TAP_UPDATE = "tap_update"
    KEG_UPDATE = "keg_update"
    INVENTORY_DATA = "inventory_data"
    HISTORY_DATA = "history_data"
    ORDERS_DATA = "orders_data"
    ORDER_CREATED = "order_created"
    ALERT = "alert"
    TAP_DELETED = "tap_deleted"
    TAP_STATUS_CHANGED = "tap_status_changed"


class Notification(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: NotificationKind
    data: Any = None
    emitted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_frame(self) -> dict[str, Any]:
        """JSON frame sent to websocket viewers."""
        return {"type": self.kind.value, "data": self.data}
