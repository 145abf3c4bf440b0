#!/usr/bin/env python3
"""Simulate the valve box of one tap.

Relays pour requests to the active keg and fails over to the next keg when
the active one reports empty.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pytap import MqttBus, TapConfig, TapError, ValveBox  # noqa: E402

_LOG = logging.getLogger("sim_valve")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulated valve box controller.")
    parser.add_argument("tap_id", nargs="?", default="tap-01", help="Tap id (default tap-01).")
    parser.add_argument(
        "--kegs",
        default="keg-A,keg-B,keg-C",
        help="Comma-separated keg ids in failover order.",
    )
    parser.add_argument("--beer", default="Hazy IPA", help="Beer name shown before any telemetry.")
    parser.add_argument("--broker", help="MQTT broker URL (mqtt://host:port).")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    return parser.parse_args()


async def _run(args: argparse.Namespace, config: TapConfig) -> None:
    loop = asyncio.get_running_loop()
    bus = MqttBus(loop=loop, client_prefix=f"pytap-valve-{args.tap_id}", keepalive=config.mqtt_keepalive, logger=_LOG)
    bus.start(config.broker_url)
    box = ValveBox(
        bus,
        args.tap_id,
        [keg.strip() for keg in args.kegs.split(",") if keg.strip()],
        beer_name=args.beer,
        keg_capacity_ml=config.keg_size_ml,
        swap_delay=config.swap_delay,
        display_interval=config.display_heartbeat,
    )
    box.start()

    stop = asyncio.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)
    try:
        await stop.wait()
    finally:
        box.close()
        bus.stop()


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        config = TapConfig.from_env(**({"broker_url": args.broker} if args.broker else {}))
        asyncio.run(_run(args, config))
    except (TapError, ValueError) as exc:
        print(f"[valve] {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
