"""Typed models for device messages, live tap state and persisted records."""

from pytap.models._base import TapBaseModel, TapEnum
from pytap.models.messages import (
    DeviceMessage,
    DisplayMessage,
    DisplayView,
    KegCommand,
    KegEventMessage,
    KegEventType,
    KegState,
    KegStatus,
    PourEvent,
    PumpAction,
    UiEventMessage,
)
from pytap.models.records import (
    DepletionForecast,
    InventoryRecord,
    InventoryStatus,
    Order,
    OrderStatus,
    TelemetrySample,
    UsageBucket,
)
from pytap.models.session import NO_KEG, KegRuntime, TapSession, default_display

__all__ = [
    "NO_KEG",
    "DepletionForecast",
    "DeviceMessage",
    "DisplayMessage",
    "DisplayView",
    "InventoryRecord",
    "InventoryStatus",
    "KegCommand",
    "KegEventMessage",
    "KegEventType",
    "KegRuntime",
    "KegState",
    "KegStatus",
    "Order",
    "OrderStatus",
    "PourEvent",
    "PumpAction",
    "TapBaseModel",
    "TapEnum",
    "TapSession",
    "TelemetrySample",
    "UiEventMessage",
    "UsageBucket",
    "default_display",
]
