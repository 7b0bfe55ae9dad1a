"""Token-gated outbound send path behind ``POST /api/send``.

Checks run in a fixed order and stop at the first failure:

1. token missing            -> 401
2. token unknown            -> 403
3. WhatsApp not connected   -> 503
4. number/message missing   -> 400
5. engine send failed       -> 500

A successful send bumps the account's message counter and returns 200.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from wabridge.accounts import AccountStore
from wabridge.logger import logger
from wabridge.types import SendResult

TOKEN_HEADER = "x-access-token"
TOKEN_FIELD = "access_token"

SENT_MESSAGE = "Message sent successfully"


class Sender(Protocol):
    def is_connected(self) -> bool: ...

    async def send(self, recipient: str, body: str) -> SendResult: ...


@dataclass(frozen=True)
class GatewayResponse:
    status: int
    body: dict[str, Any] = field(default_factory=dict)


def _failure(status: int, error: str) -> GatewayResponse:
    return GatewayResponse(status, {"success": False, "error": error})


def extract_token(
    headers: Mapping[str, str],
    form: Mapping[str, Any],
    query: Mapping[str, str],
) -> str | None:
    """Header, then form body, then query string. First non-empty value wins."""
    for source, key in ((headers, TOKEN_HEADER), (form, TOKEN_FIELD), (query, TOKEN_FIELD)):
        value = source.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class SendGateway:
    def __init__(self, accounts: AccountStore, sender: Sender) -> None:
        self._accounts = accounts
        self._sender = sender

    async def send(
        self, token: str | None, number: Any, message: Any
    ) -> GatewayResponse:
        if not token:
            return _failure(401, "Access token is required")

        try:
            account = await self._accounts.lookup_by_token(token)
        except Exception:
            logger.exception("Account lookup failed")
            return _failure(500, "Account lookup failed")
        if account is None:
            return _failure(403, "Invalid access token")

        if not self._sender.is_connected():
            return _failure(503, "WhatsApp is not connected")

        number = number.strip() if isinstance(number, str) else ""
        message = message if isinstance(message, str) else ""
        if not number or not message:
            return _failure(400, "number and message are required")

        result = await self._sender.send(number, message)
        if not result.success:
            return _failure(500, result.error or "Failed to send message")

        try:
            await self._accounts.increment_usage(account.id)
        except Exception:
            # Message already sent
            logger.exception("Failed to record message usage", account_id=account.id)

        return GatewayResponse(
            200,
            {"success": True, "messageId": result.message_id, "message": SENT_MESSAGE},
        )
