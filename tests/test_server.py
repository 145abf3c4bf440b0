from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from aiohttp import WSMsgType
from aiohttp.test_utils import TestClient, TestServer

from pytap.aggregator import TelemetryAggregator
from pytap.config import TapConfig
from pytap.models.messages import DisplayMessage, DisplayView, KegState, KegStatus
from pytap.server import build_app
from pytap.storage import TapRepository

NOW = datetime(2026, 3, 14, 15, 30, tzinfo=UTC)


@pytest.fixture
def repo() -> Iterator[TapRepository]:
    repository = TapRepository.from_url("sqlite://")
    yield repository
    repository.dispose()


@pytest.fixture
def aggregator(repo: TapRepository) -> TelemetryAggregator:
    aggregator = TelemetryAggregator(TapConfig(inventory_poll_interval=0), repo, clock=lambda: NOW)
    aggregator.on_display_message("tap-01", DisplayMessage(view=DisplayView.IDLE, beer_name="Stout"))
    aggregator.on_keg_status_message(
        "tap-01", "keg-A", KegStatus(state=KegState.IDLE, vol_remaining_ml=4000, beer_name="Stout")
    )
    return aggregator


@pytest_asyncio.fixture
async def client(aggregator: TelemetryAggregator) -> AsyncIterator[TestClient]:
    async with TestClient(TestServer(build_app(aggregator))) as test_client:
        yield test_client


# ------------------------------------------------------------------
# Taps and configuration
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_taps(client: TestClient) -> None:
    resp = await client.get("/api/taps")

    assert resp.status == 200
    taps = await resp.json()
    assert [tap["tap_id"] for tap in taps] == ["tap-01"]
    assert taps[0]["active_keg"]["keg_id"] == "keg-A"
    assert taps[0]["connected"] is True


@pytest.mark.asyncio
async def test_delete_tap(client: TestClient, aggregator: TelemetryAggregator) -> None:
    resp = await client.delete("/api/taps/tap-01")

    assert resp.status == 200
    body = await resp.json()
    assert body["success"] is True
    assert body["removed"] == 1
    assert len(aggregator.store) == 0


@pytest.mark.asyncio
async def test_delete_unknown_tap_is_404(client: TestClient) -> None:
    resp = await client.delete("/api/taps/tap-77")

    assert resp.status == 404
    assert "tap-77" in (await resp.json())["error"]


@pytest.mark.asyncio
async def test_config_round_trip(client: TestClient, aggregator: TelemetryAggregator) -> None:
    changed: list[str] = []
    aggregator.on_broker_change = changed.append

    resp = await client.post("/api/config", json={"mqtt_broker": "mqtt://broker.local:1883"})
    assert resp.status == 200
    assert changed == ["mqtt://broker.local:1883"]

    resp = await client.get("/api/config")
    assert await resp.json() == {"mqtt_broker": "mqtt://broker.local:1883"}


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{}, {"mqtt_broker": ""}, {"mqtt_broker": 42}, ["mqtt://x"]])
async def test_config_requires_broker(client: TestClient, body: object) -> None:
    resp = await client.post("/api/config", json=body)

    assert resp.status == 400


@pytest.mark.asyncio
async def test_config_rejects_non_json(client: TestClient) -> None:
    resp = await client.post("/api/config", data=b"mqtt_broker=x", headers={"Content-Type": "text/plain"})

    assert resp.status == 400


# ------------------------------------------------------------------
# Inventory and analytics
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_inventory_and_beers(client: TestClient) -> None:
    inventory = await (await client.get("/api/inventory")).json()
    beers = await (await client.get("/api/beers")).json()
    orders = await (await client.get("/api/orders")).json()

    assert [(row["keg_id"], row["status"]) for row in inventory] == [("keg-A", "ACTIVE")]
    assert beers == ["Stout"]
    assert orders == []


@pytest.mark.asyncio
async def test_usage_series(client: TestClient, aggregator: TelemetryAggregator) -> None:
    aggregator.analytics.record_consumption("Stout", 250, NOW - timedelta(hours=1))

    resp = await client.get(
        "/api/usage", params={"beer": "Stout", "from": "2026-03-14T13:00:00Z", "to": "2026-03-14T15:10:00Z"}
    )

    assert resp.status == 200
    series = await resp.json()
    assert [bucket["volume_ml"] for bucket in series] == [0, 250, 0]


@pytest.mark.asyncio
async def test_usage_requires_beer(client: TestClient) -> None:
    resp = await client.get("/api/usage")

    assert resp.status == 400


@pytest.mark.asyncio
async def test_usage_rejects_bad_timestamp(client: TestClient) -> None:
    resp = await client.get("/api/usage", params={"beer": "Stout", "from": "yesterday"})

    assert resp.status == 400


@pytest.mark.asyncio
async def test_efficiency_without_data(client: TestClient) -> None:
    resp = await client.get("/api/efficiency")

    assert await resp.json() == {"efficiency": None, "status": "insufficient_data"}


@pytest.mark.asyncio
async def test_depletion_forecast(client: TestClient, aggregator: TelemetryAggregator) -> None:
    aggregator.analytics.record_consumption("Stout", 14000, NOW)

    resp = await client.get("/api/depletion/keg-A", params={"tap": "tap-01"})

    assert resp.status == 200
    body = await resp.json()
    assert body["days_remaining"] == 2.0
    assert body["status"] == "ok"


@pytest.mark.asyncio
async def test_depletion_unknown_keg_is_404(client: TestClient) -> None:
    resp = await client.get("/api/depletion/keg-Z")

    assert resp.status == 404


@pytest.mark.asyncio
async def test_analytics_without_database_is_503() -> None:
    aggregator = TelemetryAggregator(TapConfig(inventory_poll_interval=0), clock=lambda: NOW)

    async with TestClient(TestServer(build_app(aggregator))) as client:
        resp = await client.get("/api/beers")

    assert resp.status == 503


# ------------------------------------------------------------------
# Live feed
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_websocket_replays_then_streams(client: TestClient, aggregator: TelemetryAggregator) -> None:
    ws = await client.ws_connect("/ws")

    replay = [await ws.receive_json(timeout=2) for _ in range(5)]
    assert [frame["type"] for frame in replay] == [
        "tap_update",
        "keg_update",
        "inventory_data",
        "history_data",
        "orders_data",
    ]
    assert len(aggregator.hub) == 1

    aggregator.on_display_message("tap-01", DisplayMessage(view=DisplayView.POURING, beer_name="Stout"))
    frame = await ws.receive_json(timeout=2)
    assert frame["type"] == "tap_update"
    assert frame["data"]["view"] == "POURING"

    await ws.close()


@pytest.mark.asyncio
async def test_websocket_closes_when_viewer_is_dropped(client: TestClient, aggregator: TelemetryAggregator) -> None:
    ws = await client.ws_connect("/ws")
    for _ in range(5):
        await ws.receive_json(timeout=2)

    await aggregator.stop()
    msg = await ws.receive(timeout=2)

    assert msg.type in {WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED}
    assert len(aggregator.hub) == 0
    await ws.close()
