"""Commands submitted by push-channel observers.

Observers send ``{"action": "start"}`` or ``{"action": "disconnect"}``.
Anything else is logged and dropped; a bad frame never closes the channel and
never produces a broadcast.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Coroutine
from typing import Any, Literal, Protocol, TypeAlias

from wabridge.logger import logger

Command: TypeAlias = Literal["start", "disconnect"]

ACTIONS: frozenset[str] = frozenset({"start", "disconnect"})


class CommandTarget(Protocol):
    async def start(self) -> None: ...

    async def disconnect(self) -> None: ...


def parse_command(raw: str | bytes) -> Command | None:
    """Return the action named in ``raw``, or None when it is not a valid command."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Ignoring unparseable observer message", err=str(exc))
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring observer message that is not an object")
        return None
    action = data.get("action")
    if action not in ACTIONS:
        logger.warning("Unknown observer action", action=action)
        return None
    return action


class CommandRouter:
    """Dispatches observer commands to the connection manager.

    :meth:`dispatch` returns as soon as the command is scheduled; outcomes
    reach observers through hub broadcasts.
    """

    def __init__(self, target: CommandTarget) -> None:
        self._handlers: dict[str, Callable[[], Coroutine[Any, Any, None]]] = {
            "start": target.start,
            "disconnect": target.disconnect,
        }
        self._inflight: set[asyncio.Task[None]] = set()

    def dispatch(self, raw: str | bytes) -> asyncio.Task[None] | None:
        action = parse_command(raw)
        if action is None:
            return None
        logger.info("Observer command", action=action)
        task = asyncio.ensure_future(_safe_call(action, self._handlers[action]))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled command to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)


async def _safe_call(action: str, handler: Callable[[], Coroutine[Any, Any, None]]) -> None:
    try:
        await handler()
    except Exception:
        logger.exception("Observer command failed", action=action)
