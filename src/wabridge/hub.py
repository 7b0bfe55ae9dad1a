"""Fan-out of connection-state changes to push-channel observers."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any, Protocol

from wabridge.logger import logger
from wabridge.types import ConnectionState


class Subscriber(Protocol):
    """Anything that can receive text frames. aiohttp's WebSocketResponse fits."""

    @property
    def closed(self) -> bool: ...

    async def send_str(self, data: str) -> None: ...


class ObserverHub:
    """Registry of live observers.

    Registration is a back-reference only: the channel handler that called
    :meth:`join` is responsible for calling :meth:`leave` when it closes.
    """

    def __init__(self, snapshot: Callable[[], ConnectionState]) -> None:
        self._snapshot = snapshot
        self._subscribers: set[Subscriber] = set()

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, subscriber: object) -> bool:
        return subscriber in self._subscribers

    async def join(self, subscriber: Subscriber) -> None:
        self._subscribers.add(subscriber)
        logger.debug("Observer joined", observers=len(self._subscribers))
        await _send(subscriber, json.dumps(self._snapshot().snapshot_message()))

    def leave(self, subscriber: Subscriber) -> None:
        self._subscribers.discard(subscriber)

    async def broadcast(self, message: dict[str, Any]) -> None:
        """Send ``message`` to every open observer. Closed ones are skipped."""
        data = json.dumps(message)
        # Copy first: join/leave may run while we are awaiting a send
        for subscriber in list(self._subscribers):
            await _send(subscriber, data)


async def _send(subscriber: Subscriber, data: str) -> None:
    if subscriber.closed:
        return
    try:
        await subscriber.send_str(data)
    except Exception as exc:
        logger.warning("Observer send failed", err=str(exc))
