from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pytap import _topics as topics
from pytap._transport import LocalBus
from pytap.devices.keg import KegDevice
from pytap.models.messages import KegCommand, KegState, PumpAction

STATUS = topics.keg_status("tap-01", "keg-A")
EVENT = topics.keg_event("tap-01", "keg-A")
COMMAND = topics.keg_command("tap-01", "keg-A")


def _recorder(bus: LocalBus) -> list[tuple[str, dict[str, Any]]]:
    seen: list[tuple[str, dict[str, Any]]] = []
    bus.subscribe("tap-01/keg/keg-A/#", lambda topic, payload: seen.append((topic, payload)))
    return seen


def _manual_keg(bus: LocalBus, volume_ml: float, **kwargs: Any) -> KegDevice:
    # The pump task sleeps for an hour, so only explicit tick() calls advance it.
    return KegDevice(bus, "tap-01", "keg-A", volume_ml=volume_ml, tick_seconds=0.5, tick_interval=3600, **kwargs)


@pytest.mark.asyncio
async def test_ten_ticks_remove_fifty_ml_each() -> None:
    bus = LocalBus()
    seen = _recorder(bus)
    keg = _manual_keg(bus, 20000)

    assert keg.start_pump() is True
    for _ in range(10):
        assert keg.tick() is True
    await bus.settle()

    statuses = [payload for topic, payload in seen if topic == STATUS]
    assert len(statuses) == 10
    assert [status["vol_remaining_ml"] for status in statuses] == [20000 - 50 * (i + 1) for i in range(10)]
    assert all(status["state"] == "PUMPING" for status in statuses)
    assert all(status["flow_lpm"] == 6.0 for status in statuses)
    assert keg.volume_ml == 19500
    keg.close()


@pytest.mark.asyncio
async def test_start_on_empty_keg_emits_one_empty_event() -> None:
    bus = LocalBus()
    seen = _recorder(bus)
    keg = _manual_keg(bus, 0)

    assert keg.start_pump() is False
    await bus.settle()

    assert keg.state == KegState.IDLE
    assert [topic for topic, _ in seen] == [EVENT]
    assert seen[0][1]["event"] == "EMPTY_DETECTED"
    assert seen[0][1]["reason"] == "FLOW_STALL"


@pytest.mark.asyncio
async def test_start_while_pumping_is_noop() -> None:
    bus = LocalBus()
    keg = _manual_keg(bus, 20000)

    assert keg.start_pump() is True
    assert keg.start_pump() is False
    assert keg.is_pumping
    keg.close()


@pytest.mark.asyncio
async def test_running_dry_stops_then_reports_empty() -> None:
    bus = LocalBus()
    seen = _recorder(bus)
    keg = _manual_keg(bus, 100)

    keg.start_pump()
    assert keg.tick() is True
    assert keg.tick() is False
    assert keg.tick() is False
    await bus.settle()

    assert keg.state == KegState.IDLE
    assert keg.volume_ml == 0
    assert [topic for topic, _ in seen] == [STATUS, STATUS, STATUS, EVENT]
    pumping_50, pumping_0, final = (payload for _, payload in seen[:3])
    assert (pumping_50["state"], pumping_50["vol_remaining_ml"]) == ("PUMPING", 50)
    assert (pumping_0["state"], pumping_0["vol_remaining_ml"]) == ("PUMPING", 0)
    assert (final["state"], final["flow_lpm"]) == ("IDLE", 0)


@pytest.mark.asyncio
async def test_volume_never_goes_negative() -> None:
    bus = LocalBus()
    keg = _manual_keg(bus, 30)

    keg.start_pump()
    keg.tick()

    assert keg.volume_ml == 0


@pytest.mark.asyncio
async def test_stop_publishes_final_idle_sample() -> None:
    bus = LocalBus()
    seen = _recorder(bus)
    keg = _manual_keg(bus, 20000)

    assert keg.stop_pump() is False
    keg.start_pump()
    keg.tick()
    assert keg.stop_pump() is True
    await bus.settle()

    final = seen[-1][1]
    assert final["state"] == "IDLE"
    assert final["flow_lpm"] == 0
    assert final["vol_remaining_ml"] == 19950
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_timeout_cuts_pump_off() -> None:
    bus = LocalBus()
    keg = _manual_keg(bus, 20000)

    keg.start_pump(KegCommand(action=PumpAction.START_PUMP, pwm_duty=255, timeout_ms=1000))

    assert keg.tick() is True
    assert keg.tick() is False
    assert keg.state == KegState.IDLE
    assert keg.volume_ml == 19900


@pytest.mark.asyncio
async def test_start_announces_idle_status() -> None:
    bus = LocalBus()
    seen = _recorder(bus)
    keg = KegDevice(bus, "tap-01", "keg-A", volume_ml=12000, beer_name="Stout")

    keg.start()
    await bus.settle()

    assert seen == [
        (
            STATUS,
            {
                "state": "IDLE",
                "flow_lpm": 0.0,
                "temp_beer_c": 4.2,
                "vol_remaining_ml": 12000.0,
                "vol_total_ml": 20000.0,
                "beer_name": "Stout",
                "pump_duty": 0,
            },
        )
    ]
    keg.close()


@pytest.mark.asyncio
async def test_commands_over_bus_run_keg_dry() -> None:
    bus = LocalBus()
    seen = _recorder(bus)
    keg = KegDevice(bus, "tap-01", "keg-A", volume_ml=150, tick_seconds=0.5, tick_interval=0.001)
    keg.start()

    bus.publish(COMMAND, {"action": "START_PUMP", "pwm_duty": 255, "timeout_ms": 30000})
    await bus.settle()
    assert keg.is_pumping

    for _ in range(500):
        if not keg.is_pumping:
            break
        await asyncio.sleep(0.005)
    await bus.settle()

    assert keg.volume_ml == 0
    events = [payload for topic, payload in seen if topic == EVENT]
    assert len(events) == 1
    keg.close()


@pytest.mark.asyncio
async def test_malformed_command_is_ignored() -> None:
    bus = LocalBus()
    keg = _manual_keg(bus, 20000)
    keg.start()

    bus.publish(COMMAND, {"pwm_duty": 255})
    await bus.settle()

    assert keg.state == KegState.IDLE
    keg.close()
