#!/usr/bin/env python3
"""Run the telemetry aggregator with its HTTP/websocket adapter.

Subscribes to every tap on the configured MQTT broker, persists inventory
and usage to the configured database and serves the live feed on ``/ws``.
Configuration comes from ``PYTAP_*`` environment variables; command-line
options override them.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from aiohttp import web  # noqa: E402

from pytap import MqttBus, TapConfig, TapError, TapRepository, TelemetryAggregator  # noqa: E402
from pytap.server import build_app  # noqa: E402

_LOG = logging.getLogger("run_backend")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="pytap backend: aggregator, persistence and live feed.")
    parser.add_argument("--broker", help="MQTT broker URL (mqtt://host:port).")
    parser.add_argument("--db", help="SQLAlchemy database URL.")
    parser.add_argument("--host", help="HTTP bind address.")
    parser.add_argument("--port", type=int, help="HTTP port.")
    parser.add_argument("--no-persist", action="store_true", help="Keep state in memory only.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    return parser.parse_args()


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.broker:
        overrides["broker_url"] = args.broker
    if args.db:
        overrides["db_url"] = args.db
    if args.host:
        overrides["http_host"] = args.host
    if args.port:
        overrides["http_port"] = args.port
    if args.no_persist:
        overrides["persist_enabled"] = False
    return overrides


async def _run(config: TapConfig) -> None:
    loop = asyncio.get_running_loop()
    repository = TapRepository.from_url(config.db_url) if config.persist_enabled else None
    bus = MqttBus(loop=loop, client_prefix="pytap-backend", keepalive=config.mqtt_keepalive, logger=_LOG)
    aggregator = TelemetryAggregator(config, repository, on_broker_change=bus.reconnect)

    await aggregator.start(bus)
    bus.start(aggregator.get_broker_url())

    runner = web.AppRunner(build_app(aggregator))
    await runner.setup()
    site = web.TCPSite(runner, config.http_host, config.http_port)
    await site.start()
    _LOG.info("Backend listening on http://%s:%s", config.http_host, config.http_port)

    stop = asyncio.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)
    try:
        await stop.wait()
    finally:
        _LOG.info("Shutting down")
        await runner.cleanup()
        await aggregator.stop()
        bus.stop()
        if repository is not None:
            repository.dispose()


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        config = TapConfig.from_env(**_overrides(args))
        asyncio.run(_run(config))
    except TapError as exc:
        print(f"[backend] {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
