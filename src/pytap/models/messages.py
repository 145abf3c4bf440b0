"""Wire message models, one per topic channel.

Field names match the JSON keys used on the wire.
"""

from __future__ import annotations

from typing import ClassVar

from pydantic import Field, field_validator

from pytap._topics import Channel
from pytap.ingestion.normalize import safe_float, safe_int, safe_str
from pytap.models._base import TapBaseModel, TapEnum


class KegState(TapEnum):
    UNKNOWN = "UNKNOWN"
    IDLE = "IDLE"
    PUMPING = "PUMPING"


class PumpAction(TapEnum):
    UNKNOWN = "UNKNOWN"
    START_PUMP = "START_PUMP"
    STOP_PUMP = "STOP_PUMP"


class PourEvent(TapEnum):
    UNKNOWN = "UNKNOWN"
    POUR_START = "POUR_START"
    POUR_STOP = "POUR_STOP"


class KegEventType(TapEnum):
    UNKNOWN = "UNKNOWN"
    EMPTY_DETECTED = "EMPTY_DETECTED"


class DisplayView(TapEnum):
    """Screen shown on the tap UI."""

    UNKNOWN = "UNKNOWN"
    IDLE = "IDLE"
    POURING = "POURING"
    SWAP = "SWAP"
    OFFLINE = "OFFLINE"


class DisplayMessage(TapBaseModel):
    """``{tap}/ui/display``: what the tap screen should show."""

    channel: ClassVar[Channel] = Channel.DISPLAY

    view: DisplayView = DisplayView.OFFLINE
    beer_name: str | None = None
    volume_remaining_pct: int = 0
    alert: str | None = None

    @field_validator("volume_remaining_pct", mode="before")
    @classmethod
    def _coerce_pct(cls, value: object) -> int:
        parsed = safe_float(value)
        if parsed is None:
            return 0
        return max(0, min(100, round(parsed)))


class UiEventMessage(TapBaseModel):
    """``{tap}/ui/event``: user pour intent."""

    channel: ClassVar[Channel] = Channel.UI_EVENT

    event: PourEvent
    timestamp: int | None = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: object) -> int | None:
        return safe_int(value)


class KegCommand(TapBaseModel):
    """``{tap}/keg/{keg}/command``: pump control."""

    channel: ClassVar[Channel] = Channel.COMMAND

    action: PumpAction
    pwm_duty: int | None = None
    timeout_ms: int | None = None

    @field_validator("pwm_duty", "timeout_ms", mode="before")
    @classmethod
    def _coerce_ints(cls, value: object) -> int | None:
        return safe_int(value)


class KegStatus(TapBaseModel):
    """``{tap}/keg/{keg}/status``: keg telemetry sample.

    Every field is optional; how missing values are treated depends on the
    pump state (see :mod:`pytap.state.policy`).
    """

    channel: ClassVar[Channel] = Channel.STATUS

    state: KegState | None = None
    flow_lpm: float | None = None
    temp_beer_c: float | None = None
    vol_remaining_ml: float | None = None
    vol_total_ml: float | None = None
    beer_name: str | None = None
    pump_duty: int | None = None

    @field_validator("flow_lpm", "temp_beer_c", "vol_remaining_ml", "vol_total_ml", mode="before")
    @classmethod
    def _coerce_floats(cls, value: object) -> float | None:
        return safe_float(value)

    @field_validator("pump_duty", mode="before")
    @classmethod
    def _coerce_duty(cls, value: object) -> int | None:
        return safe_int(value)

    @field_validator("beer_name", mode="before")
    @classmethod
    def _coerce_beer(cls, value: object) -> str | None:
        return safe_str(value)

    @property
    def is_pumping(self) -> bool:
        return self.state == KegState.PUMPING


class KegEventMessage(TapBaseModel):
    """``{tap}/keg/{keg}/event``: critical keg event."""

    channel: ClassVar[Channel] = Channel.KEG_EVENT

    event: KegEventType
    reason: str | None = None
    timestamp: int | None = None
    metrics: dict[str, float] = Field(default_factory=dict)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: object) -> int | None:
        return safe_int(value)


DeviceMessage = DisplayMessage | UiEventMessage | KegCommand | KegStatus | KegEventMessage
