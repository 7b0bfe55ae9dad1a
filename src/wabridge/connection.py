"""Lifecycle of the single shared WhatsApp connection.

ConnectionManager owns the engine handle and the ConnectionState snapshot.
Commands (start/disconnect) are serialized by an asyncio.Lock; engine events
arrive through ``_on_event`` and are ignored unless they come from the handle
that is currently active. Close events take the same lock before tearing
the handle down. Every state change is pushed through the ObserverHub.

Close handling:

* remote logout -> idle, credentials wiped, a fresh start() pairs from scratch
* any other close -> handle dropped, start() re-runs after ``reconnect_delay``

At most one reconnect timer is pending at a time, and any manual start() or
disconnect() cancels it.
"""

from __future__ import annotations

import asyncio
import re

from wabridge.credentials import CredentialStore
from wabridge.engine import USER_SERVER, EngineHandle, EventCallback, ProtocolEngine
from wabridge.hub import ObserverHub
from wabridge.logger import logger
from wabridge.qr import QrRenderError, render_qr_data_uri
from wabridge.types import (
    HANDLE_PHASES,
    Closed,
    ConnectionState,
    EngineEvent,
    Opened,
    Phase,
    QrReady,
    SendResult,
)

DEFAULT_RECONNECT_DELAY = 3.0

START_FAILED_MESSAGE = "Failed to start WhatsApp connection"
QR_FAILED_MESSAGE = "Failed to generate QR code"
NOT_CONNECTED_MESSAGE = "WhatsApp is not connected"
SEND_FAILED_MESSAGE = "Failed to send message"

_NON_DIGITS = re.compile(r"\D")


def normalize_recipient(recipient: str) -> str:
    """Turn a phone number as typed by a user into a WhatsApp user JID.

    Every non-digit is dropped first, including any ``@server`` suffix, and
    the user-chat server is appended. Returns ``""`` when no digits remain.
    """
    digits = _NON_DIGITS.sub("", recipient)
    if not digits:
        return ""
    return f"{digits}@{USER_SERVER}"


def phone_from_self_id(self_id: str) -> str:
    """``"9665551234:17@s.whatsapp.net"`` -> ``"9665551234"``."""
    return self_id.split(":", 1)[0].split("@", 1)[0]


class ConnectionManager:
    def __init__(
        self,
        engine: ProtocolEngine,
        credentials: CredentialStore,
        hub: ObserverHub | None = None,
        *,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
    ) -> None:
        self._engine = engine
        self._credentials = credentials
        self.hub = hub if hub is not None else ObserverHub(lambda: self.state)
        self._reconnect_delay = reconnect_delay
        self._state = ConnectionState.idle()
        self._handle: EngineHandle | None = None
        self._generation = 0
        self._lock = asyncio.Lock()
        self._reconnect_timer: asyncio.TimerHandle | None = None
        self._background: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def has_handle(self) -> bool:
        return self._handle is not None

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer is not None

    def is_connected(self) -> bool:
        return self._state.phase is Phase.ONLINE and self._handle is not None

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Open a connection unless one is already live or in progress."""
        async with self._lock:
            self._cancel_reconnect()
            phase = self._state.phase

            if phase in (Phase.CONNECTING, Phase.AWAITING_SCAN) and self._handle is not None:
                logger.info("Connection already in progress, ignoring start", phase=phase)
                return
            if phase is Phase.ONLINE and self._handle is not None:
                logger.info("Already connected, ignoring start")
                await self.hub.broadcast(self._state.to_message())
                return

            await self._teardown()
            await self._transition(ConnectionState.connecting())

            try:
                auth_db = self._credentials.prepare()
                self._generation += 1
                handle = self._engine.open(auth_db, self._events_for(self._generation))
                self._handle = handle
                await handle.start()
            except Exception:
                logger.exception("Failed to start WhatsApp connection")
                await self._teardown()
                await self._transition(ConnectionState.faulted(START_FAILED_MESSAGE))

    async def disconnect(self) -> None:
        """Log out and return to idle, whatever the engine does."""
        async with self._lock:
            had_pending = self._cancel_reconnect()
            handle = self._handle
            if handle is None and not had_pending:
                logger.debug("Disconnect ignored, no active connection")
                return

            if handle is not None:
                # Events the logout itself triggers belong to a dying handle
                self._generation += 1
                try:
                    await handle.logout()
                except Exception as exc:
                    logger.warning("WhatsApp logout failed, forcing teardown", err=str(exc))

            await self._teardown()
            self._credentials.clear()
            await self._transition(ConnectionState.idle())

    async def shutdown(self) -> None:
        """Drop the connection on process exit. Credentials are kept."""
        async with self._lock:
            self._cancel_reconnect()
            await self._teardown()
            self._state = ConnectionState.idle()
        for task in list(self._background):
            task.cancel()

    async def send(self, recipient: str, body: str) -> SendResult:
        """Send a text message. Engine failures come back as a failed result."""
        handle = self._handle
        if not self.is_connected() or handle is None:
            return SendResult(success=False, error=NOT_CONNECTED_MESSAGE)
        if not recipient or not body:
            return SendResult(success=False, error="recipient and body are required")

        jid = normalize_recipient(recipient)
        if not jid:
            return SendResult(success=False, error="invalid recipient")

        try:
            message_id = await handle.send_text(jid, body)
        except Exception as exc:
            logger.error("Failed to send message", jid=jid, err=str(exc))
            return SendResult(success=False, error=str(exc) or SEND_FAILED_MESSAGE)

        logger.info("Message sent", jid=jid, message_id=message_id)
        return SendResult(success=True, message_id=message_id)

    # ------------------------------------------------------------------
    # Engine events
    # ------------------------------------------------------------------

    def _events_for(self, generation: int) -> EventCallback:
        def current(event: EngineEvent) -> bool:
            if generation != self._generation or self._handle is None:
                logger.debug("Dropping event from stale handle", event_type=type(event).__name__)
                return False
            return True

        async def _handler(event: EngineEvent) -> None:
            if not current(event):
                return
            if isinstance(event, Closed):
                # Closes tear the handle down, so they queue behind start/disconnect
                async with self._lock:
                    if current(event):
                        await self._on_event(event)
                return
            await self._on_event(event)

        return _handler

    async def _on_event(self, event: EngineEvent) -> None:
        match event:
            case QrReady(payload=payload):
                await self._on_qr(payload)
            case Opened(self_id=self_id):
                await self._on_opened(self_id)
            case Closed(logged_out=True):
                await self._on_logged_out()
            case Closed(reason=reason):
                await self._on_closed(reason)

    async def _on_qr(self, payload: str) -> None:
        try:
            image = render_qr_data_uri(payload)
        except QrRenderError as exc:
            logger.error("Failed to generate QR code", err=str(exc))
            # Handle stays up; the next QR event retries
            await self.hub.broadcast({"type": "error", "message": QR_FAILED_MESSAGE})
            return
        await self._transition(ConnectionState.awaiting_scan(image))

    async def _on_opened(self, self_id: str) -> None:
        phone = phone_from_self_id(self_id)
        logger.info("Connected to WhatsApp", phone=phone)
        await self._transition(ConnectionState.online(phone))

    async def _on_logged_out(self) -> None:
        logger.info("Logged out from WhatsApp")
        self._cancel_reconnect()
        await self._teardown()
        self._credentials.clear()
        await self._transition(ConnectionState.idle())

    async def _on_closed(self, reason: str) -> None:
        logger.info(
            "Connection closed, reconnecting",
            reason=reason,
            delay=self._reconnect_delay,
        )
        await self._teardown()
        self._state = ConnectionState.idle()
        await self.hub.broadcast(ConnectionState.connecting().to_message())
        self._schedule_reconnect()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _transition(self, state: ConnectionState) -> None:
        self._state = state
        logger.info("WhatsApp connection phase", phase=state.phase)
        await self.hub.broadcast(state.to_message())

    async def _teardown(self) -> None:
        """Close and forget the current handle. No-op without one."""
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            await handle.close()
        except Exception as exc:
            logger.warning("Error closing WhatsApp handle", err=str(exc))
        if self._state.phase in HANDLE_PHASES:
            self._state = ConnectionState.idle()

    def _schedule_reconnect(self) -> None:
        self._cancel_reconnect()
        loop = asyncio.get_running_loop()
        self._reconnect_timer = loop.call_later(self._reconnect_delay, self._fire_reconnect)

    def _cancel_reconnect(self) -> bool:
        timer, self._reconnect_timer = self._reconnect_timer, None
        if timer is None:
            return False
        timer.cancel()
        return True

    def _fire_reconnect(self) -> None:
        self._reconnect_timer = None
        task = asyncio.ensure_future(self.start())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
