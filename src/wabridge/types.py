"""Data models for wabridge."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeAlias


class WabridgeError(Exception):
    """Base class for errors raised by wabridge modules."""


class Phase(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_SCAN = "awaiting_scan"
    ONLINE = "online"
    FAULTED = "faulted"


# Phases in which the manager holds a live engine handle
HANDLE_PHASES = frozenset({Phase.CONNECTING, Phase.AWAITING_SCAN, Phase.ONLINE})


@dataclass(frozen=True)
class ConnectionState:
    """Snapshot of the single WhatsApp connection.

    Build instances through the phase constructors below; each one populates
    exactly the field that belongs to its phase.
    """

    phase: Phase = Phase.IDLE
    pairing_image: str | None = None
    linked_identity: str | None = None
    fault_message: str | None = None

    @classmethod
    def idle(cls) -> ConnectionState:
        return cls(Phase.IDLE)

    @classmethod
    def connecting(cls) -> ConnectionState:
        return cls(Phase.CONNECTING)

    @classmethod
    def awaiting_scan(cls, pairing_image: str) -> ConnectionState:
        return cls(Phase.AWAITING_SCAN, pairing_image=pairing_image)

    @classmethod
    def online(cls, linked_identity: str) -> ConnectionState:
        return cls(Phase.ONLINE, linked_identity=linked_identity)

    @classmethod
    def faulted(cls, fault_message: str) -> ConnectionState:
        return cls(Phase.FAULTED, fault_message=fault_message)

    def to_message(self) -> dict[str, Any]:
        """Push-channel message announcing this state."""
        match self.phase:
            case Phase.CONNECTING:
                return {"type": "connecting"}
            case Phase.AWAITING_SCAN:
                return {"type": "qr", "qr": self.pairing_image}
            case Phase.ONLINE:
                return {"type": "connected", "phoneNumber": self.linked_identity}
            case Phase.FAULTED:
                return {"type": "error", "message": self.fault_message}
            case _:
                return {"type": "disconnected"}

    def snapshot_message(self) -> dict[str, Any]:
        """Message sent to an observer that just joined.

        Only ``connected`` is replayed; every other phase reads as
        ``disconnected`` until the next broadcast.
        """
        if self.phase is Phase.ONLINE:
            return self.to_message()
        return {"type": "disconnected"}


# --- Engine events ---


@dataclass(frozen=True)
class QrReady:
    """The engine produced a pairing payload to be scanned."""

    payload: str


@dataclass(frozen=True)
class Opened:
    """The engine finished logging in; ``self_id`` is the linked device JID."""

    self_id: str


@dataclass(frozen=True)
class Closed:
    """The engine connection ended. ``logged_out`` marks a remote logout."""

    reason: str = ""
    logged_out: bool = False


EngineEvent: TypeAlias = QrReady | Opened | Closed


@dataclass
class Account:
    id: str
    email: str
    access_token: str
    message_count: int = 0
    created_at: str = ""


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None
