from __future__ import annotations

import asyncio

import pytest

from pytap.state.events import Notification, NotificationKind
from pytap.viewers import ViewerHub


def _alert(msg: str) -> Notification:
    return Notification(kind=NotificationKind.ALERT, data={"type": "error", "msg": msg})


@pytest.mark.asyncio
async def test_broadcast_without_viewers_is_noop() -> None:
    hub = ViewerHub()

    hub.broadcast(_alert("nobody listening"))

    assert len(hub) == 0


@pytest.mark.asyncio
async def test_viewers_receive_in_emission_order() -> None:
    hub = ViewerHub()
    first = hub.attach()
    second = hub.attach()

    for msg in ("one", "two", "three"):
        hub.broadcast(_alert(msg))

    for viewer in (first, second):
        assert [n.data["msg"] for n in viewer.drain()] == ["one", "two", "three"]
    assert first.id != second.id


@pytest.mark.asyncio
async def test_next_waits_for_notification() -> None:
    hub = ViewerHub()
    viewer = hub.attach()

    waiter = asyncio.ensure_future(viewer.next())
    await asyncio.sleep(0)
    assert not waiter.done()
    hub.broadcast(_alert("hello"))

    notification = await asyncio.wait_for(waiter, timeout=1)
    assert notification.data["msg"] == "hello"


@pytest.mark.asyncio
async def test_full_viewer_is_detached() -> None:
    hub = ViewerHub(queue_size=2)
    slow = hub.attach()
    fast = hub.attach()

    for msg in ("a", "b"):
        hub.broadcast(_alert(msg))
    fast.drain()
    hub.broadcast(_alert("c"))

    assert len(hub) == 1
    assert [n.data["msg"] for n in slow.drain()] == ["a", "b"]
    assert [n.data["msg"] for n in fast.drain()] == ["c"]


@pytest.mark.asyncio
async def test_detach_is_idempotent() -> None:
    hub = ViewerHub()
    viewer = hub.attach()

    hub.detach(viewer)
    hub.detach(viewer)

    assert len(hub) == 0


def test_frame_shape() -> None:
    frame = _alert("keg empty").to_frame()

    assert frame == {"type": "alert", "data": {"type": "error", "msg": "keg empty"}}


@pytest.mark.asyncio
async def test_next_returns_none_once_detached() -> None:
    hub = ViewerHub()
    viewer = hub.attach()

    waiter = asyncio.ensure_future(viewer.next())
    await asyncio.sleep(0)
    hub.detach(viewer)

    assert await asyncio.wait_for(waiter, timeout=1) is None
    assert viewer.detached.is_set()


@pytest.mark.asyncio
async def test_dropped_viewer_gets_backlog_then_none() -> None:
    hub = ViewerHub(queue_size=1)
    slow = hub.attach()

    hub.broadcast(_alert("kept"))
    hub.broadcast(_alert("overflow"))

    assert len(hub) == 0
    first = await slow.next()
    assert first is not None
    assert first.data["msg"] == "kept"
    assert await asyncio.wait_for(slow.next(), timeout=1) is None


@pytest.mark.asyncio
async def test_close_detaches_everyone() -> None:
    hub = ViewerHub()
    viewers = [hub.attach(), hub.attach()]

    hub.close()

    assert len(hub) == 0
    assert all(viewer.detached.is_set() for viewer in viewers)
