"""Capability interface for the WhatsApp protocol engine.

The connection manager only talks to these protocols, so tests can script a
fake engine and production wires in :mod:`wabridge.engine_neonize`.
"""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any, Protocol, TypeAlias

from wabridge.types import EngineEvent

EventCallback: TypeAlias = Callable[[EngineEvent], Coroutine[Any, Any, None]]

# Routing suffix for one-to-one chats
USER_SERVER = "s.whatsapp.net"


class EngineHandle(Protocol):
    """One live engine connection."""

    @property
    def self_id(self) -> str | None: ...

    async def start(self) -> None:
        """Begin connecting. Progress arrives through the event callback."""
        ...

    async def send_text(self, jid: str, body: str) -> str:
        """Send a text message and return the engine's message id."""
        ...

    async def logout(self) -> None: ...

    async def close(self) -> None:
        """Detach event delivery and drop the socket. Safe to call twice."""
        ...


class ProtocolEngine(Protocol):
    def open(self, credentials_path: Path, on_event: EventCallback) -> EngineHandle: ...
