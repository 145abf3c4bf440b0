"""Usage analytics: hourly buckets, dispensing efficiency, depletion forecast."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

from pytap import _constants as C
from pytap.exceptions import KegNotFoundError
from pytap.models.records import DepletionForecast, TelemetrySample, UsageBucket
from pytap.storage.repository import TapRepository

_logger = logging.getLogger(__name__)

_HOUR = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def hour_bucket(ts: datetime) -> datetime:
    """Start of the clock hour containing *ts* (UTC)."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).replace(minute=0, second=0, microsecond=0)


def flow_volume_ml(flow_lpm: float, seconds: float) -> float:
    """Volume a flow meter reading implies over *seconds*."""
    return flow_lpm * seconds * 1000.0 / 60.0


def compute_efficiency(samples: Sequence[TelemetrySample]) -> float | None:
    """Measured volume drop as a percentage of the flow-meter integral.

    *samples* must be time ordered. Returns ``None`` when fewer than two
    samples exist or the flow integral is zero; otherwise a value in
    ``[0, 100]``.
    """
    if len(samples) < 2:
        return None

    total_flow = 0.0
    total_actual = 0.0
    for prev, curr in zip(samples, samples[1:]):
        dt = (curr.timestamp - prev.timestamp).total_seconds()
        total_flow += flow_volume_ml(prev.flow_lpm or 0.0, dt)
        if prev.vol_remaining_ml is not None and curr.vol_remaining_ml is not None:
            total_actual += max(0.0, prev.vol_remaining_ml - curr.vol_remaining_ml)

    if total_flow <= 0:
        return None
    return max(0.0, min(100.0, total_actual / total_flow * 100.0))


def forecast_days_remaining(
    total_usage_ml: float,
    current_volume_ml: float,
    *,
    days: int = C.FORECAST_LOOKBACK_DAYS,
) -> tuple[float, float | None]:
    """Average daily consumption and the days it leaves for *current_volume_ml*."""
    avg_daily = total_usage_ml / days
    if avg_daily <= 0 or current_volume_ml <= 0:
        return avg_daily, None
    return avg_daily, current_volume_ml / avg_daily


def fill_hourly(buckets: Sequence[UsageBucket], beer_name: str, start: datetime, end: datetime) -> list[UsageBucket]:
    """Hourly series from *start* to *end* inclusive, missing hours as zero."""
    by_start = {bucket.bucket_start: bucket.volume_ml for bucket in buckets}
    series: list[UsageBucket] = []
    cursor = hour_bucket(start)
    last = hour_bucket(end)
    while cursor <= last:
        series.append(UsageBucket(bucket_start=cursor, beer_name=beer_name, volume_ml=by_start.get(cursor, 0.0)))
        cursor += _HOUR
    return series


class UsageAnalytics:
    """Derived metrics over the persisted telemetry and usage ledger."""

    def __init__(
        self,
        repository: TapRepository,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repository
        self._clock = clock

    def record_consumption(self, beer_name: str, delta_ml: float, at: datetime | None = None) -> datetime:
        """Fold a consumption delta into its hourly bucket; returns the bucket start."""
        bucket = hour_bucket(at or self._clock())
        self._repo.add_usage(bucket, beer_name, delta_ml)
        return bucket

    def efficiency(self, window: timedelta = timedelta(hours=C.EFFICIENCY_WINDOW_HOURS)) -> float | None:
        samples = self._repo.telemetry_since(self._clock() - window)
        return compute_efficiency(samples)

    def depletion_forecast(
        self,
        keg_id: str,
        *,
        tap_id: str | None = None,
        current_volume_ml: float | None = None,
    ) -> DepletionForecast:
        record = self._repo.find_inventory(keg_id, tap_id)
        if record is None:
            raise KegNotFoundError(f"Keg {keg_id} not found", keg_id=keg_id, tap_id=tap_id or "")
        volume = record.volume_remaining_ml if current_volume_ml is None else current_volume_ml
        since = self._clock() - timedelta(days=C.FORECAST_LOOKBACK_DAYS)
        total = self._repo.usage_total(record.beer_name, since)
        avg_daily, days = forecast_days_remaining(total, volume)
        _logger.debug("Forecast keg=%s beer=%s total=%s avg=%s days=%s", keg_id, record.beer_name, total, avg_daily, days)
        return DepletionForecast(
            keg_id=keg_id,
            beer_name=record.beer_name,
            current_volume_ml=volume,
            avg_daily_ml=avg_daily if total > 0 else None,
            days_remaining=days,
        )

    def usage_series(self, beer_name: str, start: datetime | None = None, end: datetime | None = None) -> list[UsageBucket]:
        end = end or self._clock()
        start = start or end - timedelta(hours=24)
        rows = self._repo.usage_between(beer_name, hour_bucket(start), end)
        return fill_hourly(rows, beer_name, start, end)

    def beers(self) -> list[str]:
        return self._repo.beer_names()
