"""Valve box: per-tap keg selection and failover state machine."""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Sequence
from typing import Any

from pytap import _constants as C
from pytap import _topics as topics
from pytap._topics import Channel
from pytap._transport import MessageBus
from pytap.exceptions import TapPayloadError
from pytap.ingestion.messages import decode_message
from pytap.ingestion.normalize import percent_of
from pytap.models.messages import (
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


NO_KEGS_ALERT = "No kegs available"


class ValveState(enum.StrEnum):
    IDLE = "IDLE"
    POURING = "POURING"
    SWAPPING = "SWAPPING"


class ValveBox:
    """Mediates between the tap UI and an ordered set of kegs.

    Pour intent from ``{tap}/ui/event`` is relayed to the active keg. When
    the active keg reports ``EMPTY_DETECTED`` the box stops it, advances to
    the next keg round-robin and, after the mechanical swap delay, resumes
    the pour if the user is still pouring. Kegs that reported empty are
    remembered until they report positive volume again; once every keg is
    depleted the box stays idle and answers pour requests with an alert.
    """

    def __init__(
        self,
        bus: MessageBus,
        tap_id: str,
        keg_ids: Sequence[str],
        *,
        beer_name: str = C.DEFAULT_BEER_NAME,
        keg_capacity_ml: float = C.DEFAULT_KEG_SIZE_ML,
        swap_delay: float = C.SWAP_DELAY_S,
        display_interval: float = C.DISPLAY_HEARTBEAT_S,
        pwm_duty: int = C.PUMP_PWM_DUTY,
        timeout_ms: int | None = C.PUMP_TIMEOUT_MS,
        logger: logging.Logger | None = None,
    ) -> None:
        if not keg_ids:
            raise ValueError("a valve box needs at least one keg")
        self._bus = bus
        self.tap_id = tap_id
        self.keg_ids: tuple[str, ...] = tuple(keg_ids)
        self.beer_name = beer_name
        self.keg_capacity_ml = keg_capacity_ml
        self.swap_delay = swap_delay
        self.display_interval = display_interval
        self.pwm_duty = pwm_duty
        self.timeout_ms = timeout_ms
        self._logger = logger or logging.getLogger(__name__)

        self.state = ValveState.IDLE
        self.active_index = 0
        self.is_pouring = False
        self.volume_pct: int | None = None
        self._pump_confirmed = False
        self._depleted: set[str] = set()
        self._last_display: DisplayMessage | None = None
        self._swap_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._patterns = (
            topics.ui_event(tap_id),
            topics.keg_status(tap_id),
            topics.keg_event(tap_id),
        )

    @property
    def active_keg_id(self) -> str:
        return self.keg_ids[self.active_index]

    @property
    def depleted(self) -> frozenset[str]:
        return frozenset(self._depleted)

    @property
    def exhausted(self) -> bool:
        """Every keg on this tap has reported empty."""
        return self._depleted.issuperset(self.keg_ids)

    @property
    def last_display(self) -> DisplayMessage | None:
        return self._last_display

    def start(self) -> None:
        for pattern in self._patterns:
            self._bus.subscribe(pattern, self._on_message)
        self._logger.info("Valve box %s active keg %s of %s", self.tap_id, self.active_keg_id, list(self.keg_ids))
        self.publish_display(DisplayView.IDLE)
        if self.display_interval > 0:
            self._heartbeat_task = asyncio.get_running_loop().create_task(self._display_heartbeat())

    def close(self) -> None:
        for pattern in self._patterns:
            self._bus.unsubscribe(pattern, self._on_message)
        self._cancel_swap_task()
        if self._heartbeat_task is not None and not self._heartbeat_task.done():
            self._heartbeat_task.cancel()
        self._heartbeat_task = None

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _on_message(self, topic: str, payload: dict[str, Any]) -> None:
        try:
            address, message = decode_message(topic, payload)
        except TapPayloadError:
            self._logger.warning("Valve box %s dropping malformed message on %s", self.tap_id, topic, exc_info=True)
            return

        if address.channel == Channel.UI_EVENT:
            assert isinstance(message, UiEventMessage)  # noqa: S101
            self._logger.debug("UI event %s", message.event)
            self.handle_ui_event(message.event)
        elif address.channel == Channel.STATUS and address.keg_id is not None:
            assert isinstance(message, KegStatus)  # noqa: S101
            self.handle_keg_status(address.keg_id, message)
        elif address.channel == Channel.KEG_EVENT and address.keg_id is not None:
            assert isinstance(message, KegEventMessage)  # noqa: S101
            self._logger.debug("Keg event from %s: %s", address.keg_id, message.event)
            if message.event == KegEventType.EMPTY_DETECTED:
                self.handle_keg_empty(address.keg_id)

    def handle_ui_event(self, event: PourEvent) -> None:
        if event == PourEvent.POUR_START:
            self._pour_start()
        elif event == PourEvent.POUR_STOP:
            self._pour_stop()
        else:
            self._logger.warning("Valve box %s ignoring unknown UI event", self.tap_id)

    def _pour_start(self) -> None:
        if self.exhausted:
            self._logger.warning("Valve box %s: pour requested but every keg is empty", self.tap_id)
            self.is_pouring = False
            self.publish_display(DisplayView.IDLE, alert=NO_KEGS_ALERT)
            return
        self.is_pouring = True
        if self.state == ValveState.SWAPPING:
            # Resumed when the swap completes.
            return
        self._logger.info("Opening valves for %s", self.active_keg_id)
        self._send_start(self.active_keg_id)
        self.state = ValveState.POURING
        self.publish_display(DisplayView.POURING)

    def _pour_stop(self) -> None:
        self.is_pouring = False
        if self.state == ValveState.SWAPPING:
            return
        self._logger.info("Closing valves for %s", self.active_keg_id)
        self._send_stop(self.active_keg_id)
        self.state = ValveState.IDLE
        self.publish_display(DisplayView.IDLE)

    def handle_keg_status(self, keg_id: str, status: KegStatus) -> None:
        """Refresh the cached level from the active keg; other kegs only clear depletion."""
        volume = status.vol_remaining_ml
        if keg_id in self._depleted and volume is not None and volume > 0:
            self._logger.info("Keg %s on %s refilled", keg_id, self.tap_id)
            self._depleted.discard(keg_id)

        if keg_id != self.active_keg_id:
            return

        capacity = status.vol_total_ml if status.vol_total_ml else self.keg_capacity_ml
        pct = percent_of(volume, capacity)
        if pct is not None:
            self.volume_pct = pct
        if status.beer_name:
            self.beer_name = status.beer_name

        if self.state == ValveState.POURING and self._pump_stopped_on_its_own(status):
            self._logger.warning("Keg %s on %s stopped pumping mid-pour", keg_id, self.tap_id)
            self.is_pouring = False
            self.state = ValveState.IDLE
            self.publish_display(DisplayView.IDLE)
            return

        if self.state != ValveState.SWAPPING:
            self.publish_display(self._resting_view())

    def _pump_stopped_on_its_own(self, status: KegStatus) -> bool:
        """An IDLE report with beer left after the keg confirmed pumping.

        A dry keg also reports IDLE, but its EMPTY_DETECTED event drives the
        failover instead.
        """
        if status.is_pumping:
            self._pump_confirmed = True
            return False
        volume = status.vol_remaining_ml
        return (
            self._pump_confirmed
            and status.state == KegState.IDLE
            and volume is not None
            and volume > 0
        )

    def handle_keg_empty(self, keg_id: str) -> None:
        self._depleted.add(keg_id)
        if keg_id != self.active_keg_id:
            self._logger.debug("Ignoring empty report from standby keg %s", keg_id)
            return

        old_keg = keg_id
        self.active_index = (self.active_index + 1) % len(self.keg_ids)
        new_keg = self.active_keg_id
        self._logger.warning("Keg %s empty on %s, failing over to %s", old_keg, self.tap_id, new_keg)

        self._send_stop(old_keg)
        self.state = ValveState.SWAPPING
        self.publish_display(DisplayView.SWAP, alert=f"Switching {old_keg} -> {new_keg}", pct_override=0)
        self.volume_pct = 100

        self._cancel_swap_task()
        self._swap_task = asyncio.get_running_loop().create_task(self._complete_swap_later())

    # ------------------------------------------------------------------
    # Swap completion
    # ------------------------------------------------------------------

    async def _complete_swap_later(self) -> None:
        await asyncio.sleep(self.swap_delay)
        self.complete_swap()

    def complete_swap(self) -> None:
        """Leave SWAPPING: resume the pour, go idle, or report exhaustion."""
        if self.state != ValveState.SWAPPING:
            return
        self._cancel_swap_task()
        if self.exhausted:
            self._logger.warning("Valve box %s has no kegs left", self.tap_id)
            self.state = ValveState.IDLE
            self.is_pouring = False
            self.publish_display(DisplayView.IDLE, alert=NO_KEGS_ALERT)
            return
        if self.is_pouring:
            self._logger.info("Resuming flow on new keg %s", self.active_keg_id)
            self._send_start(self.active_keg_id)
            self.state = ValveState.POURING
            self.publish_display(DisplayView.POURING)
            return
        self.state = ValveState.IDLE
        self.publish_display(DisplayView.IDLE)

    def _cancel_swap_task(self) -> None:
        task = self._swap_task
        self._swap_task = None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _resting_view(self) -> DisplayView:
        return DisplayView.POURING if self.is_pouring else DisplayView.IDLE

    def _send_start(self, keg_id: str) -> None:
        self._pump_confirmed = False
        command = KegCommand(action=PumpAction.START_PUMP, pwm_duty=self.pwm_duty, timeout_ms=self.timeout_ms)
        self._bus.publish(topics.keg_command(self.tap_id, keg_id), command.to_payload(exclude_none=True))

    def _send_stop(self, keg_id: str) -> None:
        command = KegCommand(action=PumpAction.STOP_PUMP)
        self._bus.publish(topics.keg_command(self.tap_id, keg_id), command.to_payload(exclude_none=True))

    def publish_display(
        self,
        view: DisplayView,
        *,
        alert: str | None = None,
        pct_override: int | None = None,
    ) -> DisplayMessage:
        if pct_override is not None:
            pct = pct_override
        else:
            pct = self.volume_pct if self.volume_pct is not None else 0
        display = DisplayMessage(view=view, beer_name=self.beer_name, volume_remaining_pct=pct, alert=alert)
        self._last_display = display
        self._bus.publish(topics.ui_display(self.tap_id), display.to_payload())
        return display

    async def _display_heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.display_interval)
            if self.state == ValveState.SWAPPING and self._last_display is not None:
                self._bus.publish(topics.ui_display(self.tap_id), self._last_display.to_payload())
            else:
                self.publish_display(self._resting_view())
