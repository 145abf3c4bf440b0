"""Deterministic state merge policy.

This module contains *no* payload parsing; it receives typed messages from
the ingestion layer and decides how they change the live state.

Two named policies govern a keg status sample:

``trust_while_pumping``
    During active measurement every reading is taken as reported. Missing
    values stay ``None`` so a silent sensor is visible instead of masked.
``default_while_idle``
    At rest, missing numeric readings default to ``0`` and a missing or
    unrecognised state defaults to ``IDLE``.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from pytap import _constants as C
from pytap.models.messages import KegState, KegStatus
from pytap.models.records import InventoryStatus
from pytap.models.session import KegRuntime


def clamp_volume(value: float | None, capacity_ml: float) -> float | None:
    """Keep a reading within ``0..capacity_ml``."""
    if value is None:
        return None
    if value < 0:
        return 0.0
    if capacity_ml > 0 and value > capacity_ml:
        return capacity_ml
    return value


def capacity_of(status: KegStatus, fallback_ml: float = C.DEFAULT_KEG_SIZE_ML) -> float:
    """Reported keg capacity, or *fallback_ml* when the sample omits it."""
    if status.vol_total_ml is not None and status.vol_total_ml > 0:
        return status.vol_total_ml
    return fallback_ml


def trust_while_pumping(keg_id: str, status: KegStatus, capacity_ml: float = C.DEFAULT_KEG_SIZE_ML) -> KegRuntime:
    return KegRuntime(
        keg_id=keg_id,
        state=KegState.PUMPING,
        volume_remaining_ml=clamp_volume(status.vol_remaining_ml, capacity_of(status, capacity_ml)),
        flow_lpm=status.flow_lpm,
        temp_beer_c=status.temp_beer_c,
    )


def default_while_idle(keg_id: str, status: KegStatus, capacity_ml: float = C.DEFAULT_KEG_SIZE_ML) -> KegRuntime:
    volume = clamp_volume(status.vol_remaining_ml, capacity_of(status, capacity_ml))
    return KegRuntime(
        keg_id=keg_id,
        state=KegState.IDLE,
        volume_remaining_ml=volume if volume is not None else 0.0,
        flow_lpm=status.flow_lpm if status.flow_lpm is not None else 0.0,
        temp_beer_c=status.temp_beer_c if status.temp_beer_c is not None else 0.0,
    )


def apply_status_policy(
    current: KegRuntime,
    keg_id: str,
    status: KegStatus,
    *,
    capacity_ml: float = C.DEFAULT_KEG_SIZE_ML,
) -> KegRuntime | None:
    """Return the tap's new active-keg runtime, or ``None`` to leave it unchanged.

    A pumping keg always becomes the tap's active keg. An idle sample only
    updates the active keg if it comes from that keg (or no keg is known
    yet); idle reports from standby kegs do not steal the slot.
    """
    if status.is_pumping:
        return trust_while_pumping(keg_id, status, capacity_ml)
    if current.is_placeholder or current.keg_id == keg_id:
        return default_while_idle(keg_id, status, capacity_ml)
    return None


def consumption_delta(last_volume: float | None, current_volume: float | None) -> float:
    """Volume consumed between two readings.

    Only strictly decreasing readings count; increases (refill or sensor
    noise) contribute nothing.
    """
    if last_volume is None or current_volume is None:
        return 0.0
    if current_volume < last_volume:
        return last_volume - current_volume
    return 0.0


def inventory_status(
    *,
    keg_id: str,
    active_keg_id: str,
    state: KegState | None,
    volume_remaining_ml: float,
) -> InventoryStatus:
    if volume_remaining_ml <= 0:
        return InventoryStatus.EMPTY
    if state == KegState.PUMPING or keg_id == active_keg_id:
        return InventoryStatus.ACTIVE
    return InventoryStatus.STANDBY


def needs_reorder(status: KegStatus, threshold_ml: float) -> bool:
    """An idle keg reporting a volume below *threshold_ml* should be reordered."""
    if status.is_pumping or status.vol_remaining_ml is None:
        return False
    return status.vol_remaining_ml < threshold_ml


def is_heartbeat_expired(now: datetime, last_heartbeat: datetime, timeout: timedelta) -> bool:
    return now - last_heartbeat > timeout
