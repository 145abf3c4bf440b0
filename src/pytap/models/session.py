"""Live per-tap state held by the aggregator."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pytap.models._base import to_epoch_ms
from pytap.models.messages import DisplayMessage, DisplayView, KegState

#: Placeholder keg id used before a tap has reported any keg.
NO_KEG = "---"


class KegRuntime(BaseModel):
    """Live view of the keg currently serving a tap.

    Numeric fields may be ``None`` while pumping: readings taken during
    active measurement are stored as reported, never back-filled.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    keg_id: str = NO_KEG
    state: KegState = KegState.IDLE
    volume_remaining_ml: float | None = 0.0
    flow_lpm: float | None = 0.0
    temp_beer_c: float | None = 0.0

    @property
    def is_placeholder(self) -> bool:
        return self.keg_id == NO_KEG


def default_display(beer_name: str | None = None) -> DisplayMessage:
    """Display shown for a tap that has not published its own screen yet."""
    return DisplayMessage(view=DisplayView.OFFLINE, beer_name=beer_name, volume_remaining_pct=0)


class TapSession(BaseModel):
    """Canonical state of one tap; owned and mutated only by the aggregator."""

    model_config = ConfigDict(extra="forbid")

    tap_id: str
    display: DisplayMessage = Field(default_factory=default_display)
    active_keg: KegRuntime = Field(default_factory=KegRuntime)
    last_heartbeat: datetime
    connected: bool = True

    def tap_update_payload(self) -> dict[str, Any]:
        return {
            "tap_id": self.tap_id,
            "connected": self.connected,
            **self.display.to_payload(),
        }

    def keg_update_payload(self) -> dict[str, Any]:
        return {
            "tap_id": self.tap_id,
            **self.active_keg.model_dump(mode="json"),
        }

    def summary(self) -> dict[str, Any]:
        """Snapshot used by the ``list taps`` control call."""
        return {
            "tap_id": self.tap_id,
            "display": self.display.to_payload(),
            "active_keg": self.active_keg.model_dump(mode="json"),
            "connected": self.connected,
            "last_heartbeat": to_epoch_ms(self.last_heartbeat),
        }
