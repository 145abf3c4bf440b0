"""Runtime configuration for pytap."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pytap import _constants as C
from pytap.exceptions import TapConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def parse_broker_url(raw_broker: str) -> tuple[str, int]:
    """Split ``mqtt://host:port`` (scheme and port optional) into host and port."""
    value = raw_broker.strip()
    if not value:
        raise TapConfigError("Broker value is empty")

    if "://" in value:
        value = value.split("://", 1)[1]
    if "/" in value:
        value = value.split("/", 1)[0]

    host, _, maybe_port = value.rpartition(":")
    if host and maybe_port.isdigit():
        return host, int(maybe_port)
    return value, 1883


@dataclasses.dataclass(frozen=True)
class TapConfig:
    """Backend and simulator configuration.

    Parameters
    ----------
    broker_url : str
        MQTT broker, ``mqtt://host:port``. A value stored in the settings
        table takes precedence once the backend is running.
    db_url : str
        SQLAlchemy database URL.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    heartbeat_timeout : float
        Seconds without any message before a tap is marked disconnected.
    heartbeat_check_interval : float
        Period of the liveness sweep.
    inventory_poll_interval : float
        Period of the inventory/orders re-broadcast. ``0`` disables it.
    low_stock_threshold_ml : float
        Idle kegs below this volume trigger a reorder.
    keg_size_ml : float
        Capacity assumed when a status message omits ``vol_total_ml``.
    pump_tick : float
        Keg simulator physics step in seconds.
    swap_delay : float
        Valve box mechanical changeover time in seconds.
    display_heartbeat : float
        Valve box display republish period. ``0`` disables it.
    http_host : str
        Bind address of the viewer/control HTTP server.
    http_port : int
        Port of the viewer/control HTTP server.
    persist_enabled : bool
        Disable to run the aggregator without touching the database.
    """

    broker_url: str = C.DEFAULT_BROKER_URL
    db_url: str = C.DEFAULT_DB_URL
    mqtt_keepalive: int = 60
    heartbeat_timeout: float = C.HEARTBEAT_TIMEOUT_S
    heartbeat_check_interval: float = C.HEARTBEAT_CHECK_INTERVAL_S
    inventory_poll_interval: float = C.INVENTORY_POLL_INTERVAL_S
    low_stock_threshold_ml: float = C.LOW_STOCK_THRESHOLD_ML
    keg_size_ml: float = C.DEFAULT_KEG_SIZE_ML
    pump_tick: float = C.PUMP_TICK_S
    swap_delay: float = C.SWAP_DELAY_S
    display_heartbeat: float = C.DISPLAY_HEARTBEAT_S
    http_host: str = "0.0.0.0"
    http_port: int = 3001
    persist_enabled: bool = True

    def __post_init__(self) -> None:
        if self.heartbeat_timeout <= 0:
            raise TapConfigError("heartbeat_timeout must be positive")
        if self.heartbeat_check_interval <= 0:
            raise TapConfigError("heartbeat_check_interval must be positive")
        if self.pump_tick <= 0:
            raise TapConfigError("pump_tick must be positive")
        if self.keg_size_ml <= 0:
            raise TapConfigError("keg_size_ml must be positive")

    @classmethod
    def from_env(cls, **overrides: Any) -> TapConfig:
        """Create configuration from ``PYTAP_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "PYTAP_BROKER_URL": "broker_url",
            "PYTAP_DB_URL": "db_url",
            "PYTAP_HTTP_HOST": "http_host",
        }
        _ENV_FLOAT_MAP = {
            "PYTAP_HEARTBEAT_TIMEOUT": "heartbeat_timeout",
            "PYTAP_HEARTBEAT_CHECK_INTERVAL": "heartbeat_check_interval",
            "PYTAP_INVENTORY_POLL_INTERVAL": "inventory_poll_interval",
            "PYTAP_LOW_STOCK_THRESHOLD_ML": "low_stock_threshold_ml",
            "PYTAP_KEG_SIZE_ML": "keg_size_ml",
            "PYTAP_PUMP_TICK": "pump_tick",
            "PYTAP_SWAP_DELAY": "swap_delay",
            "PYTAP_DISPLAY_HEARTBEAT": "display_heartbeat",
        }
        _ENV_INT_MAP = {
            "PYTAP_MQTT_KEEPALIVE": "mqtt_keepalive",
            "PYTAP_HTTP_PORT": "http_port",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val
        try:
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = float(val)
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = int(val)
        except ValueError as exc:
            raise TapConfigError(f"Invalid numeric environment value: {exc}") from exc

        if "persist_enabled" not in overrides:
            config_kwargs["persist_enabled"] = _env_bool(env.get("PYTAP_PERSIST_ENABLED"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
