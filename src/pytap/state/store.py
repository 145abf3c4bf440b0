"""In-memory store of live tap sessions.

Only the aggregator mutates this store, always from its own event loop, so
no locking is needed: the loop serialises every writer.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta

from pytap.models.messages import DisplayMessage
from pytap.models.session import KegRuntime, TapSession, default_display
from pytap.state.policy import is_heartbeat_expired


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TapStateStore:
    """Map of tap id to :class:`TapSession`."""

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._sessions: dict[str, TapSession] = {}

    def __contains__(self, tap_id: object) -> bool:
        return tap_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[TapSession]:
        return iter(list(self._sessions.values()))

    def get(self, tap_id: str) -> TapSession | None:
        return self._sessions.get(tap_id)

    def upsert_or_create(
        self,
        tap_id: str,
        *,
        display: DisplayMessage | None = None,
    ) -> tuple[TapSession, bool]:
        """Return the session for *tap_id*, creating it if unseen.

        The second element tells whether the session was created by this call.
        *display* only seeds a newly created session.
        """
        session = self._sessions.get(tap_id)
        if session is not None:
            return session, False
        session = TapSession(
            tap_id=tap_id,
            display=display if display is not None else default_display(),
            last_heartbeat=self._clock(),
            connected=True,
        )
        self._sessions[tap_id] = session
        return session, True

    def touch(self, tap_id: str) -> bool:
        """Record a heartbeat; returns ``True`` if the tap was disconnected before."""
        session = self._sessions[tap_id]
        was_disconnected = not session.connected
        session.last_heartbeat = self._clock()
        session.connected = True
        return was_disconnected

    def set_display(self, tap_id: str, display: DisplayMessage) -> TapSession:
        session = self._sessions[tap_id]
        session.display = display
        return session

    def set_active_keg(self, tap_id: str, runtime: KegRuntime) -> TapSession:
        session = self._sessions[tap_id]
        session.active_keg = runtime
        return session

    def expire(self, timeout: timedelta) -> list[TapSession]:
        """Mark silent sessions disconnected; returns only the ones that just flipped."""
        now = self._clock()
        flipped: list[TapSession] = []
        for session in self._sessions.values():
            if session.connected and is_heartbeat_expired(now, session.last_heartbeat, timeout):
                session.connected = False
                flipped.append(session)
        return flipped

    def remove(self, tap_id: str) -> TapSession | None:
        return self._sessions.pop(tap_id, None)

    def snapshot(self) -> list[TapSession]:
        """Deep copies of every session, safe to hand outside the aggregator."""
        return [session.model_copy(deep=True) for session in self._sessions.values()]
