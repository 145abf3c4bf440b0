"""Custom exception hierarchy for pytap."""

from __future__ import annotations


class TapError(Exception):
    """Base exception for all pytap errors."""


class TapConfigError(TapError):
    """Invalid or missing configuration."""


class TapTransportError(TapError):
    """Broker-level failure (unreachable broker, publish failure)."""

    def __init__(
        self,
        message: str,
        *,
        topic: str = "",
    ) -> None:
        self.topic = topic
        super().__init__(message)


class TapPayloadError(TapError):
    """Inbound message could not be decoded into a known message type."""

    def __init__(
        self,
        message: str,
        *,
        topic: str = "",
    ) -> None:
        self.topic = topic
        super().__init__(message)


class TapPersistenceError(TapError):
    """Database read or write failed.

    Writes are best-effort: the aggregator logs this error and keeps its
    in-memory state, which stays the source of truth for live views.
    """


class TapNotFoundError(TapError):
    """Requested tap is not known to the aggregator."""

    def __init__(self, message: str, *, tap_id: str = "") -> None:
        self.tap_id = tap_id
        super().__init__(message)


class KegNotFoundError(TapNotFoundError):
    """Requested keg has no inventory record."""

    def __init__(self, message: str, *, keg_id: str = "", tap_id: str = "") -> None:
        self.keg_id = keg_id
        super().__init__(message, tap_id=tap_id)
