#!/usr/bin/env python3
"""Simulate one keg on a tap.

The keg listens for pump commands from the valve box and reports volume,
flow and temperature while pumping.
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

from pytap import KegDevice, MqttBus, TapConfig, TapError  # noqa: E402

_LOG = logging.getLogger("sim_keg")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulated keg.")
    parser.add_argument("keg_id", nargs="?", default="keg-A", help="Keg id (default keg-A).")
    parser.add_argument("volume_ml", nargs="?", type=float, default=None, help="Starting volume in ml.")
    parser.add_argument("tap_id", nargs="?", default="tap-01", help="Tap id (default tap-01).")
    parser.add_argument("beer_name", nargs="?", default="Hazy IPA", help="Beer served from this keg.")
    parser.add_argument("--broker", help="MQTT broker URL (mqtt://host:port).")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    return parser.parse_args()


async def _run(args: argparse.Namespace, config: TapConfig) -> None:
    loop = asyncio.get_running_loop()
    bus = MqttBus(loop=loop, client_prefix=f"pytap-{args.keg_id}", keepalive=config.mqtt_keepalive, logger=_LOG)
    bus.start(config.broker_url)
    keg = KegDevice(
        bus,
        args.tap_id,
        args.keg_id,
        volume_ml=args.volume_ml,
        capacity_ml=config.keg_size_ml,
        beer_name=args.beer_name,
        tick_seconds=config.pump_tick,
    )
    keg.start()

    stop = asyncio.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)
    try:
        await stop.wait()
    finally:
        keg.close()
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
    except TapError as exc:
        print(f"[keg] {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
