"""Simulated keg: converts pump commands into volume depletion and telemetry."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from pytap import _constants as C
from pytap import _topics as topics
from pytap._transport import MessageBus
from pytap.analytics import flow_volume_ml
from pytap.exceptions import TapPayloadError
from pytap.ingestion.messages import decode_message
from pytap.models.messages import KegCommand, KegEventMessage, KegEventType, KegState, KegStatus, PumpAction


class KegDevice:
    """Stand-in for a physical keg on one tap.

    While pumping, every tick removes ``flow_lpm × tick_seconds × 1000/60`` ml
    and publishes a status sample. Reaching zero stops the pump and
    publishes ``EMPTY_DETECTED``. A keg never touches storage; it only emits
    messages.

    Parameters
    ----------
    tick_seconds
        Simulated time covered by one tick.
    tick_interval
        Wall-clock period between ticks; defaults to *tick_seconds*.
    """

    def __init__(
        self,
        bus: MessageBus,
        tap_id: str,
        keg_id: str,
        *,
        volume_ml: float | None = None,
        capacity_ml: float = C.DEFAULT_KEG_SIZE_ML,
        beer_name: str | None = None,
        flow_lpm: float = C.DEFAULT_FLOW_LPM,
        temp_beer_c: float = C.DEFAULT_BEER_TEMP_C,
        tick_seconds: float = C.PUMP_TICK_S,
        tick_interval: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        self._bus = bus
        self.tap_id = tap_id
        self.keg_id = keg_id
        self.capacity_ml = capacity_ml
        self.volume_ml = max(0.0, min(capacity_ml, capacity_ml if volume_ml is None else volume_ml))
        self.beer_name = beer_name
        self.flow_lpm = flow_lpm
        self.temp_beer_c = temp_beer_c
        self.tick_seconds = tick_seconds
        self.tick_interval = tick_interval if tick_interval is not None else tick_seconds
        self._logger = logger or logging.getLogger(__name__)
        self.state = KegState.IDLE
        self._pump_task: asyncio.Task[None] | None = None
        self._pump_duty = 0
        self._timeout_ms: int | None = None
        self._pumped_seconds = 0.0
        self._command_topic = topics.keg_command(tap_id, keg_id)

    @property
    def is_pumping(self) -> bool:
        return self.state == KegState.PUMPING

    def start(self) -> None:
        """Listen for commands and announce the keg with one IDLE status."""
        self._bus.subscribe(self._command_topic, self._on_command)
        self._logger.info("Keg %s on %s ready: %s ml of %s", self.keg_id, self.tap_id, self.volume_ml, self.beer_name)
        self._publish_status()

    def close(self) -> None:
        self._bus.unsubscribe(self._command_topic, self._on_command)
        self._cancel_pump_task()
        self.state = KegState.IDLE

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _on_command(self, topic: str, payload: dict[str, Any]) -> None:
        try:
            _, message = decode_message(topic, payload)
        except TapPayloadError:
            self._logger.warning("Ignoring malformed command on %s", topic, exc_info=True)
            return
        assert isinstance(message, KegCommand)  # noqa: S101
        self._logger.debug("Keg %s command %s", self.keg_id, message.action)
        if message.action == PumpAction.START_PUMP:
            self.start_pump(message)
        elif message.action == PumpAction.STOP_PUMP:
            self.stop_pump()
        else:
            self._logger.warning("Keg %s ignoring unknown action %s", self.keg_id, message.raw.get("action"))

    def start_pump(self, command: KegCommand | None = None) -> bool:
        """Begin pumping; returns ``True`` if the pump actually started.

        Already pumping is a no-op. An empty keg stays idle and reports
        ``EMPTY_DETECTED`` instead.
        """
        if self.is_pumping:
            return False
        if self.volume_ml <= 0:
            self._logger.warning("Cannot start pump on %s: keg empty", self.keg_id)
            self._publish_empty_event()
            return False

        self.state = KegState.PUMPING
        self._pump_duty = C.PUMP_PWM_DUTY
        self._timeout_ms = None
        if command is not None:
            self._pump_duty = command.pwm_duty if command.pwm_duty is not None else C.PUMP_PWM_DUTY
            self._timeout_ms = command.timeout_ms
        self._pumped_seconds = 0.0
        self._logger.info("Keg %s pump started (pwm=%s)", self.keg_id, self._pump_duty)
        self._pump_task = asyncio.get_running_loop().create_task(self._run_pump())
        return True

    def stop_pump(self) -> bool:
        """Halt pumping and publish a final IDLE sample; no-op when idle."""
        if not self.is_pumping:
            return False
        self.state = KegState.IDLE
        self._pump_duty = 0
        self._cancel_pump_task()
        self._logger.info("Keg %s pump stopped at %s ml", self.keg_id, self.volume_ml)
        self._publish_status()
        return True

    # ------------------------------------------------------------------
    # Physics loop
    # ------------------------------------------------------------------

    async def _run_pump(self) -> None:
        while self.is_pumping:
            await asyncio.sleep(self.tick_interval)
            if not self.tick():
                return

    def tick(self) -> bool:
        """Advance one physics step; returns whether the pump is still running."""
        if not self.is_pumping:
            return False

        self.volume_ml = max(0.0, self.volume_ml - flow_volume_ml(self.flow_lpm, self.tick_seconds))
        self._pumped_seconds += self.tick_seconds
        self._logger.debug("Keg %s status: %s ml left", self.keg_id, self.volume_ml)
        self._publish_status()

        if self.volume_ml <= 0:
            self.stop_pump()
            self._publish_empty_event()
            return False
        if self._timeout_ms is not None and self._pumped_seconds * 1000 >= self._timeout_ms:
            self._logger.warning("Keg %s pump timeout after %s ms", self.keg_id, self._timeout_ms)
            self.stop_pump()
            return False
        return True

    def _cancel_pump_task(self) -> None:
        task = self._pump_task
        self._pump_task = None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def status(self) -> KegStatus:
        return KegStatus(
            state=self.state,
            flow_lpm=self.flow_lpm if self.is_pumping else 0.0,
            temp_beer_c=self.temp_beer_c,
            vol_remaining_ml=self.volume_ml,
            vol_total_ml=self.capacity_ml,
            beer_name=self.beer_name,
            pump_duty=self._pump_duty,
        )

    def _publish_status(self) -> None:
        self._bus.publish(topics.keg_status(self.tap_id, self.keg_id), self.status().to_payload(exclude_none=True))

    def _publish_empty_event(self) -> None:
        self._logger.warning("Keg %s detected empty", self.keg_id)
        event = KegEventMessage(
            event=KegEventType.EMPTY_DETECTED,
            reason="FLOW_STALL",
            timestamp=int(time.time() * 1000),
            metrics={"flow_rate_hz": 0.0},
        )
        self._bus.publish(topics.keg_event(self.tap_id, self.keg_id), event.to_payload(exclude_none=True))
