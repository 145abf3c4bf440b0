from __future__ import annotations

from typing import Any

import pytest

from pytap import _topics as topics
from pytap._transport import LocalBus, decode_payload
from pytap.exceptions import TapPayloadError, TapTransportError


def _recorder(bus: LocalBus, pattern: str = "#") -> list[tuple[str, dict[str, Any]]]:
    seen: list[tuple[str, dict[str, Any]]] = []
    bus.subscribe(pattern, lambda topic, payload: seen.append((topic, payload)))
    return seen


@pytest.mark.asyncio
async def test_wildcard_subscription_matches_every_tap() -> None:
    bus = LocalBus()
    seen = _recorder(bus, topics.keg_status("+"))

    bus.publish("tap-01/keg/keg-A/status", {"state": "IDLE"})
    bus.publish("tap-02/keg/keg-C/status", {"state": "PUMPING"})
    bus.publish("tap-01/keg/keg-A/event", {"event": "EMPTY_DETECTED"})
    await bus.settle()

    assert [topic for topic, _ in seen] == ["tap-01/keg/keg-A/status", "tap-02/keg/keg-C/status"]


@pytest.mark.asyncio
async def test_publish_is_delivered_later_not_inline() -> None:
    bus = LocalBus()
    seen = _recorder(bus)

    bus.publish("tap-01/ui/event", {"event": "POUR_START"})

    assert seen == []
    assert bus.pending == 1
    await bus.settle()
    assert len(seen) == 1
    assert bus.pending == 0


@pytest.mark.asyncio
async def test_failing_handler_keeps_subscription() -> None:
    bus = LocalBus()
    calls: list[str] = []

    def _flaky(topic: str, payload: dict[str, Any]) -> None:
        calls.append(topic)
        if len(calls) == 1:
            raise RuntimeError("boom")

    bus.subscribe("#", _flaky)
    bus.publish("tap-01/ui/display", {})
    bus.publish("tap-01/ui/display", {})
    await bus.settle()

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery() -> None:
    bus = LocalBus()
    seen: list[str] = []

    def _handler(topic: str, payload: dict[str, Any]) -> None:
        seen.append(topic)

    bus.subscribe("tap-01/#", _handler)
    bus.unsubscribe("tap-01/#", _handler)
    bus.publish("tap-01/ui/display", {})
    await bus.settle()

    assert seen == []


@pytest.mark.asyncio
async def test_payload_is_json_round_tripped() -> None:
    bus = LocalBus()
    seen = _recorder(bus)
    payload = {"vol_remaining_ml": 100}

    bus.publish("tap-01/keg/keg-A/status", payload)
    payload["vol_remaining_ml"] = 0
    await bus.settle()

    assert seen[0][1] == {"vol_remaining_ml": 100}


@pytest.mark.asyncio
async def test_unserialisable_payload_raises() -> None:
    bus = LocalBus()

    with pytest.raises(TapTransportError):
        bus.publish("tap-01/ui/display", {"when": object()})


def test_decode_payload_requires_object() -> None:
    assert decode_payload(b'{"a": 1}') == {"a": 1}
    with pytest.raises(ValueError):
        decode_payload(b"[1, 2]")
    with pytest.raises(ValueError):
        decode_payload(b"not json")


def test_topic_builders_and_parser_agree() -> None:
    address = topics.parse_topic(topics.keg_command("tap-01", "keg-A"))

    assert address == topics.TopicAddress("tap-01", topics.Channel.COMMAND, "keg-A")
    assert topics.parse_topic(topics.ui_event("tap-01")).channel == topics.Channel.UI_EVENT
    assert topics.BACKEND_SUBSCRIPTIONS == ("+/ui/display", "+/keg/+/status", "+/keg/+/event")


def test_parse_topic_rejects_empty_segments() -> None:
    with pytest.raises(TapPayloadError):
        topics.parse_topic("/keg/keg-A/status")
    with pytest.raises(TapPayloadError):
        topics.parse_topic("tap-01/keg//status")
