"""pytap - keg and valve-box simulators plus a telemetry aggregator for draught-beer taps."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pytap")
except PackageNotFoundError:
    __version__ = "0+local"
from pytap._mqtt import MqttBus
from pytap._transport import LocalBus, MessageBus
from pytap.aggregator import TelemetryAggregator
from pytap.analytics import UsageAnalytics
from pytap.config import TapConfig
from pytap.devices import KegDevice, ValveBox, ValveState
from pytap.exceptions import (
    KegNotFoundError,
    TapConfigError,
    TapError,
    TapNotFoundError,
    TapPayloadError,
    TapPersistenceError,
    TapTransportError,
)
from pytap.models import (
    DepletionForecast,
    DisplayMessage,
    DisplayView,
    InventoryRecord,
    InventoryStatus,
    KegCommand,
    KegEventMessage,
    KegEventType,
    KegRuntime,
    KegState,
    KegStatus,
    Order,
    OrderStatus,
    PourEvent,
    PumpAction,
    TapSession,
    TelemetrySample,
    UiEventMessage,
    UsageBucket,
)
from pytap.storage import TapRepository
from pytap.viewers import Viewer, ViewerHub

__all__ = [
    "__version__",
    "DepletionForecast",
    "DisplayMessage",
    "DisplayView",
    "InventoryRecord",
    "InventoryStatus",
    "KegCommand",
    "KegDevice",
    "KegEventMessage",
    "KegEventType",
    "KegNotFoundError",
    "KegRuntime",
    "KegState",
    "KegStatus",
    "LocalBus",
    "MessageBus",
    "MqttBus",
    "Order",
    "OrderStatus",
    "PourEvent",
    "PumpAction",
    "TapConfig",
    "TapConfigError",
    "TapError",
    "TapNotFoundError",
    "TapPayloadError",
    "TapPersistenceError",
    "TapRepository",
    "TapSession",
    "TapTransportError",
    "TelemetryAggregator",
    "TelemetrySample",
    "UiEventMessage",
    "UsageAnalytics",
    "UsageBucket",
    "ValveBox",
    "ValveState",
    "Viewer",
    "ViewerHub",
]
