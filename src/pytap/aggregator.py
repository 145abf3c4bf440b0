"""Backend telemetry aggregator.

Consumes every tap's display, keg status and keg event messages, keeps the
canonical :class:`~pytap.models.session.TapSession` per tap, detects silent
taps, persists inventory and usage, and fans changes out to live viewers.

All handlers run on the aggregator's asyncio loop. State is only mutated
from there, so handlers never need locks.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, NamedTuple, TypeVar

from pytap import _constants as C
from pytap._topics import BACKEND_SUBSCRIPTIONS, Channel
from pytap._transport import MessageBus
from pytap.analytics import UsageAnalytics
from pytap.config import TapConfig, parse_broker_url
from pytap.exceptions import TapNotFoundError, TapPayloadError, TapPersistenceError
from pytap.ingestion.messages import decode_message
from pytap.models.messages import DisplayMessage, KegEventMessage, KegEventType, KegStatus
from pytap.models.records import InventoryStatus, TelemetrySample
from pytap.models.session import TapSession, default_display
from pytap.state.events import Notification, NotificationKind
from pytap.state.policy import (
    apply_status_policy,
    capacity_of,
    clamp_volume,
    consumption_delta,
    inventory_status,
    needs_reorder,
)
from pytap.state.store import TapStateStore
from pytap.storage.repository import TapRepository
from pytap.viewers import Viewer, ViewerHub

_logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _LastSample(NamedTuple):
    volume_ml: float | None
    beer_name: str


class TelemetryAggregator:
    """Single owner of live tap state.

    Parameters
    ----------
    config
        Thresholds, timeouts and the fallback broker URL.
    repository
        Persistence gateway. ``None`` runs the aggregator purely in memory;
        analytics and history are then unavailable.
    clock
        Source of "now"; injectable for tests.
    hub
        Viewer registry; a private one is created when omitted.
    on_broker_change
        Called with the new URL after :meth:`set_broker_url` stored it.
    """

    def __init__(
        self,
        config: TapConfig | None = None,
        repository: TapRepository | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        hub: ViewerHub | None = None,
        on_broker_change: Callable[[str], None] | None = None,
    ) -> None:
        self._config = config or TapConfig()
        self._repo = repository
        self._clock = clock
        self._hub = hub or ViewerHub()
        self._store = TapStateStore(clock=clock)
        self._analytics = UsageAnalytics(repository, clock=clock) if repository is not None else None
        self._last_samples: dict[tuple[str, str], _LastSample] = {}
        self._bus: MessageBus | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._broker_url = self._config.broker_url
        self.on_broker_change = on_broker_change

    @property
    def store(self) -> TapStateStore:
        return self._store

    @property
    def hub(self) -> ViewerHub:
        return self._hub

    @property
    def config(self) -> TapConfig:
        return self._config

    @property
    def analytics(self) -> UsageAnalytics:
        if self._analytics is None:
            raise TapPersistenceError("Analytics need a database; persistence is disabled")
        return self._analytics

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, bus: MessageBus) -> None:
        """Subscribe to every tap and start the periodic sweeps."""
        self._bus = bus
        for pattern in BACKEND_SUBSCRIPTIONS:
            bus.subscribe(pattern, self.handle_message)
        _logger.info("Aggregator subscribed to %s", ", ".join(BACKEND_SUBSCRIPTIONS))

        loop = asyncio.get_running_loop()
        self._tasks.append(
            loop.create_task(self._run_periodic(self._config.heartbeat_check_interval, self.sweep_heartbeats))
        )
        if self._config.inventory_poll_interval > 0 and self._repo is not None:
            self._tasks.append(
                loop.create_task(self._run_periodic(self._config.inventory_poll_interval, self.broadcast_inventory))
            )

    async def stop(self) -> None:
        bus = self._bus
        self._bus = None
        if bus is not None:
            for pattern in BACKEND_SUBSCRIPTIONS:
                bus.unsubscribe(pattern, self.handle_message)
        self._hub.close()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_periodic(self, interval: float, fn: Callable[[], Any]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                fn()
            except Exception:
                _logger.warning("Periodic %s failed", getattr(fn, "__name__", fn), exc_info=True)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def handle_message(self, topic: str, payload: dict[str, Any]) -> None:
        """Decode and route one bus message; malformed ones are logged and skipped."""
        try:
            address, message = decode_message(topic, payload)
        except TapPayloadError:
            _logger.warning("Skipping malformed message on %s", topic, exc_info=True)
            return

        _logger.debug("Message tap=%s channel=%s keg=%s", address.tap_id, address.channel, address.keg_id)
        if address.channel == Channel.DISPLAY:
            assert isinstance(message, DisplayMessage)  # noqa: S101
            self.on_display_message(address.tap_id, message)
        elif address.channel == Channel.STATUS and address.keg_id is not None:
            assert isinstance(message, KegStatus)  # noqa: S101
            self.on_keg_status_message(address.tap_id, address.keg_id, message)
        elif address.channel == Channel.KEG_EVENT and address.keg_id is not None:
            assert isinstance(message, KegEventMessage)  # noqa: S101
            self.on_keg_event_message(address.tap_id, address.keg_id, message)

    def on_display_message(self, tap_id: str, display: DisplayMessage) -> TapSession:
        session, created = self._store.upsert_or_create(tap_id, display=display)
        if created:
            _logger.info("Registered tap %s from display message", tap_id)
        self._store.set_display(tap_id, display)
        self._mark_alive(tap_id)
        self._emit(NotificationKind.TAP_UPDATE, session.tap_update_payload())
        return session

    def on_keg_status_message(self, tap_id: str, keg_id: str, status: KegStatus) -> TapSession:
        session = self._ensure_session(tap_id, beer_name=status.beer_name)
        self._mark_alive(tap_id)
        now = self._clock()

        key = (tap_id, keg_id)
        last = self._last_samples.get(key)
        beer_name = status.beer_name or (last.beer_name if last is not None else C.DEFAULT_BEER_NAME)

        capacity = capacity_of(status, self._config.keg_size_ml)
        runtime = apply_status_policy(session.active_keg, keg_id, status, capacity_ml=capacity)
        if runtime is not None:
            self._store.set_active_keg(tap_id, runtime)

        reported = clamp_volume(status.vol_remaining_ml, capacity)
        volume = reported
        if volume is None and last is not None:
            volume = last.volume_ml

        if self._repo is not None:
            repo = self._repo
            self._persist(
                "inventory upsert",
                lambda: repo.upsert_inventory(
                    tap_id=tap_id,
                    keg_id=keg_id,
                    beer_name=beer_name,
                    volume_total_ml=capacity,
                    volume_remaining_ml=volume if volume is not None else 0.0,
                    status=inventory_status(
                        keg_id=keg_id,
                        active_keg_id=session.active_keg.keg_id,
                        state=status.state,
                        volume_remaining_ml=volume if volume is not None else 0.0,
                    ),
                    now=now,
                ),
            )
            sample = TelemetrySample(
                timestamp=now,
                keg_id=keg_id,
                vol_remaining_ml=status.vol_remaining_ml,
                flow_lpm=status.flow_lpm,
                temp_beer_c=status.temp_beer_c,
            )
            self._persist("telemetry append", lambda: repo.append_telemetry(sample))

        delta = consumption_delta(last.volume_ml if last is not None else None, reported)
        if delta > 0 and self._analytics is not None:
            analytics = self._analytics
            self._persist("usage bucket", lambda: analytics.record_consumption(beer_name, delta, now))

        self._last_samples[key] = _LastSample(volume, beer_name)

        if runtime is not None:
            self._emit(NotificationKind.KEG_UPDATE, {**session.keg_update_payload(), "beer_name": beer_name})

        if needs_reorder(status, self._config.low_stock_threshold_ml):
            self._reorder(tap_id, keg_id, beer_name, now)
        return session

    def on_keg_event_message(self, tap_id: str, keg_id: str, event: KegEventMessage) -> None:
        self._ensure_session(tap_id)
        self._mark_alive(tap_id)
        if event.event != KegEventType.EMPTY_DETECTED:
            _logger.debug("Ignoring keg event %s from %s/%s", event.event, tap_id, keg_id)
            return

        _logger.warning("Keg %s on %s reported empty (%s)", keg_id, tap_id, event.reason)
        last = self._last_samples.get((tap_id, keg_id))
        beer_name = last.beer_name if last is not None else C.DEFAULT_BEER_NAME

        if self._repo is not None:
            repo = self._repo
            record = self._persist("inventory lookup", lambda: repo.find_inventory(keg_id, tap_id))
            if record is not None:
                beer_name = record.beer_name if last is None else beer_name
                total = record.volume_total_ml
            else:
                total = self._config.keg_size_ml
            self._persist(
                "inventory empty",
                lambda: repo.upsert_inventory(
                    tap_id=tap_id,
                    keg_id=keg_id,
                    beer_name=beer_name,
                    volume_total_ml=total,
                    volume_remaining_ml=0.0,
                    status=InventoryStatus.EMPTY,
                    now=self._clock(),
                ),
            )

        self._emit(
            NotificationKind.ALERT,
            {
                "type": "error",
                "tap_id": tap_id,
                "keg_id": keg_id,
                "msg": f"Keg {keg_id} on {tap_id} Empty! Swapping...",
            },
        )

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def sweep_heartbeats(self) -> list[str]:
        """Flag taps silent for longer than the timeout; returns the flipped tap ids."""
        flipped = self._store.expire(timedelta(seconds=self._config.heartbeat_timeout))
        for session in flipped:
            _logger.info("Tap %s disconnected (heartbeat timeout)", session.tap_id)
            self._emit(NotificationKind.TAP_STATUS_CHANGED, {"tap_id": session.tap_id, "connected": False})
        return [session.tap_id for session in flipped]

    def _mark_alive(self, tap_id: str) -> None:
        if self._store.touch(tap_id):
            _logger.info("Tap %s reconnected", tap_id)
            self._emit(NotificationKind.TAP_STATUS_CHANGED, {"tap_id": tap_id, "connected": True})

    def _ensure_session(self, tap_id: str, *, beer_name: str | None = None) -> TapSession:
        session, created = self._store.upsert_or_create(tap_id, display=default_display(beer_name))
        if created:
            _logger.info("Auto-registered new tap system: %s", tap_id)
            self._emit(NotificationKind.TAP_UPDATE, session.tap_update_payload())
        return session

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def list_taps(self) -> list[dict[str, Any]]:
        return [session.summary() for session in self._store.snapshot()]

    def delete_tap(self, tap_id: str) -> int:
        """Forget a tap and its inventory; returns the number of inventory rows removed."""
        if self._store.remove(tap_id) is None:
            raise TapNotFoundError(f"Tap {tap_id} not found", tap_id=tap_id)
        for key in [key for key in self._last_samples if key[0] == tap_id]:
            del self._last_samples[key]

        removed = 0
        if self._repo is not None:
            repo = self._repo
            removed = self._persist("inventory delete", lambda: repo.delete_inventory_for_tap(tap_id)) or 0
        _logger.info("Tap %s deleted", tap_id)
        self._emit(NotificationKind.TAP_DELETED, {"tap_id": tap_id})
        self.broadcast_inventory(include_orders=False)
        return removed

    def get_broker_url(self) -> str:
        """Broker URL, preferring the value stored in settings."""
        if self._repo is not None:
            repo = self._repo
            stored = self._persist("settings read", lambda: repo.get_setting(C.SETTING_MQTT_BROKER))
            if stored:
                self._broker_url = stored
        return self._broker_url

    def set_broker_url(self, url: str) -> str:
        """Store *url* and notify ``on_broker_change``; raises ``TapConfigError`` if unusable."""
        url = url.strip()
        parse_broker_url(url)
        if self._repo is not None:
            self._repo.set_setting(C.SETTING_MQTT_BROKER, url)
        self._broker_url = url
        _logger.info("Broker URL set to %s", url)
        if self.on_broker_change is not None:
            self.on_broker_change(url)
        return url

    # ------------------------------------------------------------------
    # Viewers
    # ------------------------------------------------------------------

    def attach_viewer(self) -> Viewer:
        """Attach a viewer and replay the full current state to it."""
        viewer = self._hub.attach()
        for session in self._store.snapshot():
            self._hub.send(viewer, Notification(kind=NotificationKind.TAP_UPDATE, data=session.tap_update_payload()))
            self._hub.send(viewer, Notification(kind=NotificationKind.KEG_UPDATE, data=session.keg_update_payload()))
        if self._repo is not None:
            replay = (
                (NotificationKind.INVENTORY_DATA, self.inventory),
                (NotificationKind.HISTORY_DATA, self.history),
                (NotificationKind.ORDERS_DATA, self.orders),
            )
            for kind, read in replay:
                data = self._persist(kind.value, read)
                if data is not None:
                    self._hub.send(viewer, Notification(kind=kind, data=data))
        return viewer

    def detach_viewer(self, viewer: Viewer) -> None:
        self._hub.detach(viewer)

    def inventory(self) -> list[dict[str, Any]]:
        return [record.model_dump(mode="json") for record in self._require_repo().list_inventory()]

    def orders(self) -> list[dict[str, Any]]:
        return [order.model_dump(mode="json") for order in self._require_repo().list_orders()]

    def history(self, limit: int = C.HISTORY_LIMIT) -> list[dict[str, Any]]:
        return [sample.model_dump(mode="json") for sample in self._require_repo().recent_telemetry(limit)]

    def broadcast_inventory(self, *, include_orders: bool = True) -> None:
        if self._repo is None:
            return
        inventory = self._persist("inventory read", self.inventory)
        if inventory is not None:
            self._emit(NotificationKind.INVENTORY_DATA, inventory)
        if include_orders:
            orders = self._persist("orders read", self.orders)
            if orders is not None:
                self._emit(NotificationKind.ORDERS_DATA, orders)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _reorder(self, tap_id: str, keg_id: str, beer_name: str, now: datetime) -> None:
        if self._repo is None:
            return
        repo = self._repo
        order = self._persist("order create", lambda: repo.create_order_if_absent(keg_id, beer_name, now))
        if order is not None:
            self._emit(
                NotificationKind.ORDER_CREATED,
                {"tap_id": tap_id, "keg_id": keg_id, "beer": beer_name, "order": order.model_dump(mode="json")},
            )

    def _require_repo(self) -> TapRepository:
        if self._repo is None:
            raise TapPersistenceError("Persistence is disabled")
        return self._repo

    def _persist(self, what: str, fn: Callable[[], T]) -> T | None:
        """Run a best-effort storage call; failures are logged and yield ``None``."""
        try:
            return fn()
        except TapPersistenceError:
            _logger.warning("Persistence %s failed", what, exc_info=True)
            return None

    def _emit(self, kind: NotificationKind, data: Any) -> None:
        self._hub.broadcast(Notification(kind=kind, data=data, emitted_at=self._clock()))
