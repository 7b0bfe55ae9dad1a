"""HTTP server: dashboard push channel, send API, and status endpoints.

Routes:
    GET  /ws           WebSocket push channel (state broadcasts + start/disconnect)
    POST /api/send     token-authenticated outbound message
    GET  /api/status   connection flag
    GET  /api/health   liveness
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from aiohttp import WSMsgType, web

from wabridge.commands import CommandRouter
from wabridge.connection import ConnectionManager
from wabridge.gateway import SendGateway, extract_token
from wabridge.hub import ObserverHub
from wabridge.logger import logger

_start_time = time.monotonic()

WS_HEARTBEAT = 30.0


@dataclass
class AppDeps:
    """Collaborators the handlers need, wired by app.py (or a test)."""

    manager: ConnectionManager
    hub: ObserverHub
    commands: CommandRouter
    gateway: SendGateway


deps_key: web.AppKey[AppDeps] = web.AppKey("deps", t=AppDeps)


# ------------------------------------------------------------------
# Push channel
# ------------------------------------------------------------------


async def _handle_ws(request: web.Request) -> web.WebSocketResponse:
    deps = request.app[deps_key]
    ws = web.WebSocketResponse(heartbeat=WS_HEARTBEAT)
    await ws.prepare(request)
    logger.info("Observer connected", remote=request.remote)

    await deps.hub.join(ws)
    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                deps.commands.dispatch(msg.data)
            elif msg.type == WSMsgType.BINARY:
                logger.warning("Ignoring binary observer frame", size=len(msg.data))
            elif msg.type == WSMsgType.ERROR:
                logger.warning("Observer channel error", err=str(ws.exception()))
    finally:
        deps.hub.leave(ws)
        logger.info("Observer disconnected", remote=request.remote)
    return ws


# ------------------------------------------------------------------
# Send API
# ------------------------------------------------------------------


async def _read_body(request: web.Request) -> dict[str, Any]:
    """Form-encoded or JSON request body as a flat dict. Empty on anything else."""
    if not request.body_exists:
        return {}
    if request.content_type == "application/json":
        try:
            data = await request.json()
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}
    if request.content_type in ("application/x-www-form-urlencoded", "multipart/form-data"):
        return dict(await request.post())
    return {}


async def _handle_api_send(request: web.Request) -> web.Response:
    deps = request.app[deps_key]
    body = await _read_body(request)
    token = extract_token(request.headers, body, request.query)
    result = await deps.gateway.send(token, body.get("number"), body.get("message"))
    if result.status != 200:
        logger.info("Send rejected", status=result.status, error=result.body.get("error"))
    return web.json_response(result.body, status=result.status)


# ------------------------------------------------------------------
# Status
# ------------------------------------------------------------------


async def _handle_api_status(request: web.Request) -> web.Response:
    deps = request.app[deps_key]
    connected = deps.manager.is_connected()
    return web.json_response(
        {"connected": connected, "status": "connected" if connected else "disconnected"}
    )


async def _handle_api_health(request: web.Request) -> web.Response:
    deps = request.app[deps_key]
    return web.json_response(
        {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "uptime_seconds": round(time.monotonic() - _start_time),
            "observers": len(deps.hub),
            "whatsapp": {
                "connected": deps.manager.is_connected(),
                "phase": deps.manager.state.phase.value,
            },
        }
    )


# ------------------------------------------------------------------
# Server setup
# ------------------------------------------------------------------


def create_app(deps: AppDeps) -> web.Application:
    app = web.Application()
    app[deps_key] = deps
    app.router.add_get("/ws", _handle_ws)
    app.router.add_post("/api/send", _handle_api_send)
    app.router.add_get("/api/status", _handle_api_status)
    app.router.add_get("/api/health", _handle_api_health)
    return app


async def start_http_server(deps: AppDeps, host: str, port: int) -> web.AppRunner:
    """Create, start, and return the HTTP server runner."""
    runner = web.AppRunner(create_app(deps))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("HTTP server listening", host=host, port=port)
    return runner
