"""Shared test fixtures for wabridge."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from wabridge.credentials import CredentialStore
from wabridge.engine import EventCallback
from wabridge.types import Closed, EngineEvent, Opened, QrReady

# ---------------------------------------------------------------------------
# Scripted protocol engine
# ---------------------------------------------------------------------------

SELF_ID = "9665551234:17@s.whatsapp.net"


class FakeHandle:
    """Engine handle whose events are pushed by the test."""

    def __init__(self, engine: FakeEngine, credentials_path: Path, on_event: EventCallback):
        self.engine = engine
        self.credentials_path = credentials_path
        self.on_event = on_event
        self.started = False
        self.closed = False
        self.logged_out = False
        self.sent: list[tuple[str, str]] = []
        self.send_error: Exception | None = None
        self.logout_error: Exception | None = None
        self.logout_event: EngineEvent | None = None
        self.close_delay = 0.0

    @property
    def self_id(self) -> str | None:
        return SELF_ID

    async def start(self) -> None:
        if self.engine.start_error is not None:
            raise self.engine.start_error
        self.started = True
        # Mimic the engine creating its session file on connect
        self.credentials_path.write_text("session")

    async def send_text(self, jid: str, body: str) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((jid, body))
        return f"MSG{len(self.sent)}"

    async def logout(self) -> None:
        self.logged_out = True
        if self.logout_event is not None:
            await self.emit(self.logout_event)
        if self.logout_error is not None:
            raise self.logout_error

    async def close(self) -> None:
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        self.closed = True

    # --- scripting helpers ---

    async def emit(self, event: EngineEvent) -> None:
        await self.on_event(event)

    async def qr(self, payload: str = "1@2@3") -> None:
        await self.emit(QrReady(payload))

    async def open(self, self_id: str = SELF_ID) -> None:
        await self.emit(Opened(self_id))

    async def drop(self, reason: str = "connection lost") -> None:
        await self.emit(Closed(reason=reason))

    async def remote_logout(self) -> None:
        await self.emit(Closed(reason="logged out", logged_out=True))


class FakeEngine:
    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []
        self.start_error: Exception | None = None

    def open(self, credentials_path: Path, on_event: EventCallback) -> FakeHandle:
        handle = FakeHandle(self, credentials_path, on_event)
        self.handles.append(handle)
        return handle

    @property
    def last(self) -> FakeHandle:
        return self.handles[-1]

    def live_handles(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.closed]


# ---------------------------------------------------------------------------
# Push-channel subscriber
# ---------------------------------------------------------------------------


class FakeSubscriber:
    def __init__(self, closed: bool = False) -> None:
        self.closed = closed
        self.frames: list[str] = []

    async def send_str(self, data: str) -> None:
        self.frames.append(data)

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(f) for f in self.frames]

    @property
    def types(self) -> list[str]:
        return [m["type"] for m in self.messages]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def credentials(tmp_path: Path) -> CredentialStore:
    return CredentialStore(tmp_path / "auth_info")


@pytest.fixture
def subscriber() -> FakeSubscriber:
    return FakeSubscriber()
