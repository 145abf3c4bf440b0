"""Live viewer registry and notification fan-out."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field

from pytap.state.events import Notification

_logger = logging.getLogger(__name__)

_DEFAULT_QUEUE_SIZE = 1000


@dataclass
class Viewer:
    """One attached consumer; notifications arrive on ``queue`` in emission order."""

    id: int
    queue: asyncio.Queue[Notification] = field(repr=False)
    detached: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    async def next(self) -> Notification | None:
        """Wait for the next notification.

        Returns ``None`` once the viewer has been detached and everything
        queued before that has been handed out.
        """
        if not self.queue.empty():
            return self.queue.get_nowait()
        if self.detached.is_set():
            return None
        getter = asyncio.ensure_future(self.queue.get())
        closer = asyncio.ensure_future(self.detached.wait())
        try:
            await asyncio.wait({getter, closer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            getter.cancel()
            closer.cancel()
        if getter.done() and not getter.cancelled():
            return getter.result()
        return None

    def drain(self) -> list[Notification]:
        """Everything queued so far, without waiting."""
        items: list[Notification] = []
        while not self.queue.empty():
            items.append(self.queue.get_nowait())
        return items


class ViewerHub:
    """Set of live viewers. Broadcasting with none attached is a no-op.

    A viewer whose queue is full is detached rather than allowed to stall
    the aggregator.
    """

    def __init__(self, *, queue_size: int = _DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._viewers: dict[int, Viewer] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._viewers)

    def attach(self) -> Viewer:
        viewer = Viewer(id=next(self._ids), queue=asyncio.Queue(maxsize=self._queue_size))
        self._viewers[viewer.id] = viewer
        _logger.info("Viewer %s attached (%s live)", viewer.id, len(self._viewers))
        return viewer

    def detach(self, viewer: Viewer) -> None:
        viewer.detached.set()
        if self._viewers.pop(viewer.id, None) is not None:
            _logger.info("Viewer %s detached (%s live)", viewer.id, len(self._viewers))

    def close(self) -> None:
        """Detach every viewer, ending their feeds."""
        for viewer in list(self._viewers.values()):
            self.detach(viewer)

    def send(self, viewer: Viewer, notification: Notification) -> None:
        """Deliver to a single viewer (used for state replay on attach)."""
        try:
            viewer.queue.put_nowait(notification)
        except asyncio.QueueFull:
            _logger.warning("Viewer %s is not keeping up; detaching", viewer.id)
            self.detach(viewer)

    def broadcast(self, notification: Notification) -> None:
        _logger.debug("Broadcast %s to %s viewers", notification.kind, len(self._viewers))
        for viewer in list(self._viewers.values()):
            self.send(viewer, notification)
