"""Protocol engine backed by neonize (whatsmeow Python bindings)."""

from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path

from neonize.aioze import client as neonize_client
from neonize.aioze import events as neonize_events
from neonize.aioze.client import NewAClient
from neonize.events import (
    ConnectedEv,
    ConnectFailureEv,
    DisconnectedEv,
    LoggedOutEv,
    PairStatusEv,
)
from neonize.utils.jid import Jid2String, build_jid

from wabridge.engine import USER_SERVER, EventCallback
from wabridge.logger import logger
from wabridge.types import Closed, EngineEvent, Opened, QrReady


class NeonizeHandle:
    """A single neonize client plus the events it forwards."""

    def __init__(self, auth_db: str, on_event: EventCallback) -> None:
        self._on_event = on_event
        self._closed = False
        self._idle_task: asyncio.Task[None] | None = None
        self._client = NewAClient(auth_db)
        self._register_events()

    def _register_events(self) -> None:
        @self._client.event.qr
        async def on_qr(_client: NewAClient, qr_data: bytes) -> None:
            payload = qr_data.decode() if isinstance(qr_data, bytes) else str(qr_data)
            await self._emit(QrReady(payload))

        @self._client.event(PairStatusEv)
        async def on_pair_status(_client: NewAClient, ev: PairStatusEv) -> None:
            logger.info("WhatsApp paired", user=ev.ID.User)

        @self._client.event(ConnectedEv)
        async def on_connected(_client: NewAClient, _ev: ConnectedEv) -> None:
            await self._emit(Opened(self.self_id or ""))

        @self._client.event(DisconnectedEv)
        async def on_disconnected(_client: NewAClient, _ev: DisconnectedEv) -> None:
            await self._emit(Closed(reason="disconnected"))

        @self._client.event(ConnectFailureEv)
        async def on_connect_failure(_client: NewAClient, ev: ConnectFailureEv) -> None:
            await self._emit(Closed(reason=f"connect failure: {getattr(ev, 'Reason', '')}"))

        @self._client.event(LoggedOutEv)
        async def on_logged_out(_client: NewAClient, _ev: LoggedOutEv) -> None:
            await self._emit(Closed(reason="logged out", logged_out=True))

    async def _emit(self, event: EngineEvent) -> None:
        if self._closed:
            return
        try:
            await self._on_event(event)
        except Exception:
            logger.exception(
                "Unhandled error in engine event handler", event_type=type(event).__name__
            )

    @property
    def self_id(self) -> str | None:
        me = self._client.me
        jid = getattr(me, "JID", None) if me else None
        if jid is None or not jid.User:
            return None
        return Jid2String(jid)

    async def start(self) -> None:
        await self._client.connect()
        # idle() keeps the event pump alive for the lifetime of the handle
        self._idle_task = asyncio.ensure_future(self._client.idle())

    async def send_text(self, jid: str, body: str) -> str:
        user, _, server = jid.partition("@")
        response = await self._client.send_message(build_jid(user, server or USER_SERVER), body)
        return str(response.ID)

    async def logout(self) -> None:
        await self._client.logout()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._idle_task:
            self._idle_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._idle_task
            self._idle_task = None
        with contextlib.suppress(Exception):
            await self._client.disconnect()


class NeonizeEngine:
    """Opens :class:`NeonizeHandle` instances on the running event loop."""

    def open(self, credentials_path: Path, on_event: EventCallback) -> NeonizeHandle:
        # Neonize creates its own event loop at import time. Both the events
        # module and the client module hold a reference, so patch both for
        # callbacks to land on our running loop.
        loop = asyncio.get_running_loop()
        neonize_events.event_global_loop = loop
        neonize_client.event_global_loop = loop
        return NeonizeHandle(str(credentials_path), on_event)
