"""Base model and enum for device payloads.

Every wire message model inherits from :class:`TapBaseModel` which
provides:

* A ``model_validator(mode="before")`` that strips sentinel values
  (``""``, ``"--"``, NaN) so the field default is used.
* A ``raw`` dict that captures the original payload.

Device enums inherit from :class:`TapEnum` which resolves any unmapped
string to an ``UNKNOWN`` member instead of raising ``ValueError``.
"""

from __future__ import annotations

import enum
import math
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

_SENTINELS = frozenset({"", "--", "NaN", "nan", "null"})

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def parse_epoch_timestamp(value: Any) -> datetime | None:
    """Convert an epoch timestamp (seconds **or** milliseconds) to a UTC datetime."""
    if value is None:
        return value
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    ts = float(value)
    if ts >= _MS_THRESHOLD:
        ts /= 1000.0
    return datetime.fromtimestamp(ts, tz=UTC)


def to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


class TapEnum(enum.StrEnum):
    """Base for device state enums.

    Every subclass **must** define ``UNKNOWN``. Values without a mapped
    member resolve to ``UNKNOWN``; matching is case-insensitive.
    """

    @classmethod
    def _missing_(cls, value: object) -> TapEnum:
        if isinstance(value, str):
            upper = value.strip().upper()
            for member in cls:
                if member.value == upper:
                    return member
        unknown: TapEnum = cls["UNKNOWN"]
        return unknown


class TapBaseModel(BaseModel):
    """Base for inbound/outbound device payloads.

    Handles:
    * sentinel values (``""``, ``"--"``, NaN) → dropped so the field
      default is used instead
    * stashes the original payload dict in ``raw``
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)
    """Original payload dict."""

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        """Strip sentinel values and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        cleaned = TapBaseModel._clean_dict(values)
        # Keep an explicitly supplied raw=, otherwise remember what we were given.
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned

    def to_payload(self, *, exclude_none: bool = False) -> dict[str, Any]:
        """Wire representation (``raw`` excluded, enums as strings)."""
        return self.model_dump(mode="json", exclude_none=exclude_none)
