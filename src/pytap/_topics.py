"""Topic construction and parsing.

Topic layout::

    {tap}/ui/display              valve box -> tap screen, backend
    {tap}/ui/event                tap screen -> valve box
    {tap}/keg/{keg}/command       valve box -> keg
    {tap}/keg/{keg}/status        keg -> valve box, backend
    {tap}/keg/{keg}/event         keg -> valve box, backend
"""

from __future__ import annotations

from enum import StrEnum
from typing import NamedTuple

from pytap.exceptions import TapPayloadError


class Channel(StrEnum):
    DISPLAY = "display"
    UI_EVENT = "ui_event"
    COMMAND = "command"
    STATUS = "status"
    KEG_EVENT = "keg_event"


class TopicAddress(NamedTuple):
    tap_id: str
    channel: Channel
    keg_id: str | None = None


def ui_display(tap_id: str) -> str:
    return f"{tap_id}/ui/display"


def ui_event(tap_id: str) -> str:
    return f"{tap_id}/ui/event"


def keg_command(tap_id: str, keg_id: str) -> str:
    return f"{tap_id}/keg/{keg_id}/command"


def keg_status(tap_id: str, keg_id: str = "+") -> str:
    return f"{tap_id}/keg/{keg_id}/status"


def keg_event(tap_id: str, keg_id: str = "+") -> str:
    return f"{tap_id}/keg/{keg_id}/event"


#: Subscriptions used by the backend to observe every tap.
BACKEND_SUBSCRIPTIONS: tuple[str, ...] = (
    ui_display("+"),
    keg_status("+"),
    keg_event("+"),
)


def parse_topic(topic: str) -> TopicAddress:
    """Split a concrete topic into tap id, channel and optional keg id."""
    parts = topic.split("/")
    if len(parts) == 3 and parts[1] == "ui" and parts[0]:
        if parts[2] == "display":
            return TopicAddress(parts[0], Channel.DISPLAY)
        if parts[2] == "event":
            return TopicAddress(parts[0], Channel.UI_EVENT)
    if len(parts) == 4 and parts[1] == "keg" and parts[0] and parts[2]:
        channels = {
            "command": Channel.COMMAND,
            "status": Channel.STATUS,
            "event": Channel.KEG_EVENT,
        }
        channel = channels.get(parts[3])
        if channel is not None:
            return TopicAddress(parts[0], channel, parts[2])
    raise TapPayloadError(f"Unrecognised topic: {topic}", topic=topic)
