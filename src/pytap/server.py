"""aiohttp adapter: websocket live feed and control/analytics endpoints.

Handlers only translate HTTP to aggregator calls; errors from the
:mod:`pytap.exceptions` hierarchy are mapped to status codes in one
middleware.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from aiohttp import WSMsgType, web

from pytap.aggregator import TelemetryAggregator
from pytap.exceptions import TapConfigError, TapNotFoundError, TapPersistenceError
from pytap.models._base import parse_epoch_timestamp
from pytap.viewers import Viewer

_logger = logging.getLogger(__name__)

AGGREGATOR_KEY = web.AppKey("aggregator", TelemetryAggregator)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


class _BadRequest(Exception):
    pass


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except TapNotFoundError as exc:
        return web.json_response({"error": str(exc)}, status=404)
    except (TapConfigError, _BadRequest) as exc:
        return web.json_response({"error": str(exc)}, status=400)
    except TapPersistenceError as exc:
        _logger.warning("Request %s %s failed on storage", request.method, request.path, exc_info=True)
        return web.json_response({"error": str(exc)}, status=503)


def _aggregator(request: web.Request) -> TelemetryAggregator:
    return request.app[AGGREGATOR_KEY]


def _parse_time(value: str | None, name: str) -> datetime | None:
    """Accept epoch seconds/milliseconds or ISO-8601."""
    if value is None or not value.strip():
        return None
    text = value.strip()
    try:
        if text.lstrip("-").replace(".", "", 1).isdigit():
            return parse_epoch_timestamp(float(text))
        return parse_epoch_timestamp(datetime.fromisoformat(text))
    except (ValueError, OverflowError, OSError) as exc:
        raise _BadRequest(f"Invalid '{name}' timestamp: {value}") from exc


# ----------------------------------------------------------------------
# Live feed
# ----------------------------------------------------------------------


async def _forward(viewer: Viewer, ws: web.WebSocketResponse) -> None:
    while not ws.closed:
        notification = await viewer.next()
        if notification is None:
            _logger.info("Closing feed for detached viewer %s", viewer.id)
            await ws.close()
            return
        await ws.send_json(notification.to_frame())


async def websocket_feed(request: web.Request) -> web.WebSocketResponse:
    aggregator = _aggregator(request)
    ws = web.WebSocketResponse(heartbeat=30.0)
    await ws.prepare(request)

    viewer = aggregator.attach_viewer()
    sender = asyncio.get_running_loop().create_task(_forward(viewer, ws))
    try:
        async for msg in ws:
            if msg.type == WSMsgType.ERROR:
                _logger.warning("Viewer %s websocket error: %s", viewer.id, ws.exception())
    finally:
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
        aggregator.detach_viewer(viewer)
    return ws


# ----------------------------------------------------------------------
# Taps and configuration
# ----------------------------------------------------------------------


async def list_taps(request: web.Request) -> web.Response:
    return web.json_response(_aggregator(request).list_taps())


async def delete_tap(request: web.Request) -> web.Response:
    tap_id = request.match_info["tap_id"]
    removed = _aggregator(request).delete_tap(tap_id)
    return web.json_response(
        {"success": True, "message": f"Tap {tap_id} disconnected and kegs removed", "removed": removed}
    )


async def get_config(request: web.Request) -> web.Response:
    return web.json_response({"mqtt_broker": _aggregator(request).get_broker_url()})


async def set_config(request: web.Request) -> web.Response:
    try:
        body: Any = await request.json()
    except json.JSONDecodeError as exc:
        raise _BadRequest("Body must be JSON") from exc
    broker = body.get("mqtt_broker") if isinstance(body, dict) else None
    if not isinstance(broker, str) or not broker.strip():
        raise _BadRequest("mqtt_broker is required")
    url = _aggregator(request).set_broker_url(broker)
    return web.json_response({"success": True, "mqtt_broker": url})


# ----------------------------------------------------------------------
# Inventory and analytics
# ----------------------------------------------------------------------


async def get_inventory(request: web.Request) -> web.Response:
    return web.json_response(_aggregator(request).inventory())


async def get_orders(request: web.Request) -> web.Response:
    return web.json_response(_aggregator(request).orders())


async def get_beers(request: web.Request) -> web.Response:
    return web.json_response(_aggregator(request).analytics.beers())


async def get_usage(request: web.Request) -> web.Response:
    beer = request.query.get("beer", "").strip()
    if not beer:
        raise _BadRequest("beer is required")
    start = _parse_time(request.query.get("from"), "from")
    end = _parse_time(request.query.get("to"), "to")
    series = _aggregator(request).analytics.usage_series(beer, start, end)
    return web.json_response([bucket.model_dump(mode="json") for bucket in series])


async def get_efficiency(request: web.Request) -> web.Response:
    value = _aggregator(request).analytics.efficiency()
    if value is None:
        return web.json_response({"efficiency": None, "status": "insufficient_data"})
    return web.json_response({"efficiency": round(value, 2), "status": "ok"})


async def get_depletion(request: web.Request) -> web.Response:
    keg_id = request.match_info["keg_id"]
    tap_id = request.query.get("tap") or None
    forecast = _aggregator(request).analytics.depletion_forecast(keg_id, tap_id=tap_id)
    payload = forecast.model_dump(mode="json")
    payload["status"] = "ok" if forecast.days_remaining is not None else "insufficient_data"
    return web.json_response(payload)


def build_app(aggregator: TelemetryAggregator) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[AGGREGATOR_KEY] = aggregator
    app.add_routes(
        [
            web.get("/ws", websocket_feed),
            web.get("/api/taps", list_taps),
            web.delete("/api/taps/{tap_id}", delete_tap),
            web.get("/api/config", get_config),
            web.post("/api/config", set_config),
            web.get("/api/inventory", get_inventory),
            web.get("/api/orders", get_orders),
            web.get("/api/beers", get_beers),
            web.get("/api/usage", get_usage),
            web.get("/api/efficiency", get_efficiency),
            web.get("/api/depletion/{keg_id}", get_depletion),
        ]
    )
    return app
