"""paho-mqtt runtime bridged onto an asyncio loop."""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any, cast

import paho.mqtt.client as mqtt

from pytap._transport import MessageHandler, decode_payload, dispatch, encode_payload
from pytap.config import parse_broker_url
from pytap.exceptions import TapTransportError


def _build_client_id(prefix: str) -> str:
    return f"{prefix}-{secrets.token_hex(4)}"


class MqttBus:
    """Threaded paho-mqtt client that delivers decoded messages on an asyncio loop.

    The paho network thread only decodes JSON; every handler runs on the loop
    through ``call_soon_threadsafe``. Subscriptions are remembered and
    re-issued on every successful (re)connect.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        client_prefix: str = "pytap",
        keepalive: int = 60,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._client_prefix = client_prefix
        self._keepalive = keepalive
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._broker_url: str | None = None
        self._subscriptions: list[tuple[str, MessageHandler]] = []

    @property
    def is_running(self) -> bool:
        """Whether the MQTT network loop is active."""
        return self._running

    @property
    def broker_url(self) -> str | None:
        return self._broker_url

    def start(self, broker_url: str) -> None:
        """Connect to *broker_url* and start the network loop."""
        self.stop()
        host, port = parse_broker_url(broker_url)
        client_id = _build_client_id(self._client_prefix)
        self._logger.info("MQTT connecting host=%s port=%s client_id=%s", host, port, client_id)

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=client_id,
        )
        client.enable_logger(self._logger)

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.is_failure:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.info("MQTT connected to %s:%s", host, port)
            for pattern in sorted({p for p, _ in self._subscriptions}):
                self._logger.debug("MQTT subscribing topic=%s", pattern)
                c.subscribe(pattern, qos=0)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                payload = decode_payload(msg.payload)
            except Exception:
                self._logger.warning("MQTT payload parse failure topic=%s", msg.topic, exc_info=True)
                return
            self._logger.debug("Received PUBLISH topic=%s payload=%s", msg.topic, payload)
            self._loop.call_soon_threadsafe(self._dispatch, msg.topic, payload)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.warning("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect_async(host, port, keepalive=self._keepalive)
        except (OSError, ValueError) as exc:
            raise TapTransportError(f"Cannot connect to broker {broker_url}: {exc}") from exc
        client.loop_start()

        self._client = client
        self._broker_url = broker_url
        self._running = True
        self._logger.debug("MQTT network loop started")

    def reconnect(self, broker_url: str) -> None:
        """Switch to another broker, keeping all subscriptions."""
        self._logger.info("MQTT switching broker to %s", broker_url)
        self.start(broker_url)

    def stop(self) -> None:
        """Stop and disconnect the current client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        client = self._client
        if client is None:
            raise TapTransportError("MQTT bus is not started", topic=topic)
        info = client.publish(topic, encode_payload(topic, payload), qos=0)
        if info.rc == mqtt.MQTT_ERR_NO_CONN:
            # QoS 0 while offline: the message is lost, the device carries on.
            self._logger.debug("MQTT publish dropped while offline topic=%s", topic)
        elif info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TapTransportError(f"Publish to {topic} failed rc={info.rc}", topic=topic)

    def _dispatch(self, topic: str, payload: dict[str, Any]) -> None:
        dispatch(self._subscriptions, topic, payload)

    def subscribe(self, pattern: str, handler: MessageHandler) -> None:
        already = any(p == pattern for p, _ in self._subscriptions)
        self._subscriptions.append((pattern, handler))
        if self._client is not None and not already:
            self._client.subscribe(pattern, qos=0)

    def unsubscribe(self, pattern: str, handler: MessageHandler) -> None:
        self._subscriptions = [(p, h) for p, h in self._subscriptions if not (p == pattern and h == handler)]
        if self._client is not None and not any(p == pattern for p, _ in self._subscriptions):
            self._client.unsubscribe(pattern)
