"""Topic/payload decoding.

This module translates a concrete topic and its JSON payload into a typed
message from :mod:`pytap.models.messages`.
"""

from __future__ import annotations

from typing import Any, NamedTuple

from pydantic import ValidationError

from pytap._topics import Channel, TopicAddress, parse_topic
from pytap.exceptions import TapPayloadError
from pytap.models.messages import (
    DeviceMessage,
    DisplayMessage,
    KegCommand,
    KegEventMessage,
    KegStatus,
    UiEventMessage,
)

_MODELS: dict[Channel, type[DeviceMessage]] = {
    Channel.DISPLAY: DisplayMessage,
    Channel.UI_EVENT: UiEventMessage,
    Channel.COMMAND: KegCommand,
    Channel.STATUS: KegStatus,
    Channel.KEG_EVENT: KegEventMessage,
}


class DecodedMessage(NamedTuple):
    address: TopicAddress
    message: DeviceMessage


def decode_message(topic: str, payload: dict[str, Any]) -> DecodedMessage:
    """Decode one inbound message; raises :class:`TapPayloadError` when malformed."""
    address = parse_topic(topic)
    model = _MODELS[address.channel]
    try:
        message = model.model_validate(payload)
    except ValidationError as exc:
        raise TapPayloadError(f"Malformed {address.channel} payload on {topic}: {exc}", topic=topic) from exc
    return DecodedMessage(address, message)
