"""Shared constants for pytap."""

from __future__ import annotations

#: Capacity of a standard keg (20 L).
DEFAULT_KEG_SIZE_ML: float = 20000.0

#: Below this remaining volume an idle keg triggers an automatic reorder.
LOW_STOCK_THRESHOLD_ML: float = 2000.0

#: Seconds of silence after which a tap is marked disconnected.
HEARTBEAT_TIMEOUT_S: float = 30.0

#: Interval of the aggregator's liveness sweep.
HEARTBEAT_CHECK_INTERVAL_S: float = 10.0

#: Interval at which inventory and orders are re-broadcast to viewers.
INVENTORY_POLL_INTERVAL_S: float = 5.0

#: Keg simulator physics step.
PUMP_TICK_S: float = 0.5

#: Flow rate of the simulated pump (L/min).
DEFAULT_FLOW_LPM: float = 6.0

#: Beer temperature reported by the simulated keg.
DEFAULT_BEER_TEMP_C: float = 4.2

#: Mechanical valve changeover time during failover.
SWAP_DELAY_S: float = 1.0

#: Interval at which the valve box republishes its display while idle.
DISPLAY_HEARTBEAT_S: float = 20.0

#: PWM duty sent with START_PUMP and the dead-man timeout attached to it.
PUMP_PWM_DUTY: int = 255
PUMP_TIMEOUT_MS: int = 30000

DEFAULT_BROKER_URL = "mqtt://test.mosquitto.org:1883"
DEFAULT_DB_URL = "sqlite:///smartbar.db"
DEFAULT_BEER_NAME = "Unknown"

#: Settings table key for the broker URL.
SETTING_MQTT_BROKER = "mqtt_broker"

#: Size of the rolling efficiency window and forecast lookback.
EFFICIENCY_WINDOW_HOURS = 24
FORECAST_LOOKBACK_DAYS = 7

#: Number of telemetry samples replayed to viewers as history.
HISTORY_LIMIT = 50
