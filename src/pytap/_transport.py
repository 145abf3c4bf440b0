"""Message bus interface and the in-process broker."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, Protocol

from paho.mqtt.client import topic_matches_sub

from pytap.exceptions import TapTransportError

_logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, dict[str, Any]], None]


class MessageBus(Protocol):
    """Structural pub/sub interface shared by devices and the aggregator.

    Handlers are always invoked on the owning asyncio loop, one message at a
    time, so subscribers never need their own locking.
    """

    def publish(self, topic: str, payload: dict[str, Any]) -> None: ...

    def subscribe(self, pattern: str, handler: MessageHandler) -> None: ...

    def unsubscribe(self, pattern: str, handler: MessageHandler) -> None: ...


def encode_payload(topic: str, payload: dict[str, Any]) -> bytes:
    try:
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise TapTransportError(f"Payload for {topic} is not JSON serialisable: {exc}", topic=topic) from exc


def decode_payload(raw: bytes) -> dict[str, Any]:
    """Parse a JSON object payload; raises ``ValueError`` on anything else."""
    parsed = json.loads(raw.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError("payload is not a JSON object")
    return parsed


def dispatch(
    subscriptions: list[tuple[str, MessageHandler]],
    topic: str,
    payload: dict[str, Any],
) -> None:
    """Deliver one message to every matching handler.

    A failing handler only loses this message; its subscription stays live.
    """
    for pattern, handler in list(subscriptions):
        if not topic_matches_sub(pattern, topic):
            continue
        try:
            handler(topic, payload)
        except Exception:
            _logger.warning("Handler for %s failed on topic=%s", pattern, topic, exc_info=True)


class LocalBus:
    """In-process broker with MQTT wildcard semantics.

    Payloads are JSON round-tripped like on a real broker and delivered on
    the loop via ``call_soon`` so a publish never re-enters the publisher.
    """

    def __init__(self, *, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._subscriptions: list[tuple[str, MessageHandler]] = []
        self._pending = 0

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def pending(self) -> int:
        """Number of published messages not yet delivered."""
        return self._pending

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        decoded = decode_payload(encode_payload(topic, payload))
        _logger.debug("PUBLISH topic=%s payload=%s", topic, decoded)
        self._pending += 1
        self._get_loop().call_soon(self._deliver, topic, decoded)

    def _deliver(self, topic: str, payload: dict[str, Any]) -> None:
        try:
            dispatch(self._subscriptions, topic, payload)
        finally:
            self._pending -= 1

    def subscribe(self, pattern: str, handler: MessageHandler) -> None:
        self._subscriptions.append((pattern, handler))

    def unsubscribe(self, pattern: str, handler: MessageHandler) -> None:
        self._subscriptions = [(p, h) for p, h in self._subscriptions if not (p == pattern and h == handler)]

    async def settle(self, *, max_rounds: int = 10000) -> None:
        """Yield to the loop until every published message has been delivered."""
        rounds = 0
        while self._pending and rounds < max_rounds:
            await asyncio.sleep(0)
            rounds += 1
