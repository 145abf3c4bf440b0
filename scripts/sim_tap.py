#!/usr/bin/env python3
"""Simulate the tap screen: press ENTER to toggle pouring.

Prints every display update the valve box publishes for this tap.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pytap import DisplayMessage, MqttBus, PourEvent, TapConfig, TapError, UiEventMessage  # noqa: E402
from pytap import _topics as topics  # noqa: E402

_LOG = logging.getLogger("sim_tap")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulated tap UI.")
    parser.add_argument("tap_id", nargs="?", default="tap-01", help="Tap id (default tap-01).")
    parser.add_argument("--broker", help="MQTT broker URL (mqtt://host:port).")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    return parser.parse_args()


def _print_display(_topic: str, payload: dict[str, Any]) -> None:
    display = DisplayMessage.model_validate(payload)
    print("+----------------------------------+")
    print(f"| SCREEN: {display.view.value:<24} |")
    print(f"| Beer  : {(display.beer_name or 'N/A'):<24} |")
    print(f"| Rem   : {str(display.volume_remaining_pct) + '%':<24} |")
    if display.alert:
        print(f"| ALERT : {display.alert:<24} |")
    print("+----------------------------------+")


async def _run(args: argparse.Namespace, config: TapConfig) -> None:
    loop = asyncio.get_running_loop()
    bus = MqttBus(loop=loop, client_prefix=f"pytap-ui-{args.tap_id}", keepalive=config.mqtt_keepalive, logger=_LOG)
    bus.subscribe(topics.ui_display(args.tap_id), _print_display)
    bus.start(config.broker_url)
    print("Press [ENTER] to toggle pour start/stop, Ctrl+D to quit.")

    pouring = False
    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            pouring = not pouring
            event = UiEventMessage(
                event=PourEvent.POUR_START if pouring else PourEvent.POUR_STOP,
                timestamp=int(time.time() * 1000),
            )
            _LOG.info("Publishing %s", event.event)
            bus.publish(topics.ui_event(args.tap_id), event.to_payload())
    finally:
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
        print(f"[tap] {exc}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
