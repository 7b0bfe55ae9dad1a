"""Tests for the token-gated send gateway."""

from __future__ import annotations

import pytest

from wabridge.gateway import SendGateway, extract_token
from wabridge.types import Account, SendResult

TOKEN = "a" * 64


class _Accounts:
    def __init__(self) -> None:
        self.account = Account(id="acc-1", email="a@example.com", access_token=TOKEN)
        self.lookups: list[str] = []
        self.increments: list[str] = []

    async def lookup_by_token(self, token: str) -> Account | None:
        self.lookups.append(token)
        return self.account if token == TOKEN else None

    async def increment_usage(self, account_id: str) -> None:
        self.increments.append(account_id)


class _Sender:
    def __init__(self, connected: bool = True, result: SendResult | None = None) -> None:
        self.connected = connected
        self.result = result or SendResult(success=True, message_id="MSG1")
        self.calls: list[tuple[str, str]] = []

    def is_connected(self) -> bool:
        return self.connected

    async def send(self, recipient: str, body: str) -> SendResult:
        self.calls.append((recipient, body))
        return self.result


class TestExtractToken:
    def test_header_wins(self):
        assert extract_token({"x-access-token": "h"}, {"access_token": "f"}, {"access_token": "q"}) == "h"

    def test_form_before_query(self):
        assert extract_token({}, {"access_token": "f"}, {"access_token": "q"}) == "f"

    def test_query_fallback(self):
        assert extract_token({}, {}, {"access_token": "q"}) == "q"

    def test_blank_values_skipped(self):
        assert extract_token({"x-access-token": " "}, {"access_token": ""}, {"access_token": "q"}) == "q"

    def test_missing(self):
        assert extract_token({}, {}, {}) is None


class TestSendGateway:
    @pytest.mark.asyncio
    async def test_missing_token_skips_lookup(self):
        accounts = _Accounts()
        resp = await SendGateway(accounts, _Sender()).send(None, "1", "hi")

        assert resp.status == 401
        assert resp.body["success"] is False
        assert accounts.lookups == []

    @pytest.mark.asyncio
    async def test_invalid_token(self):
        resp = await SendGateway(_Accounts(), _Sender()).send("bogus", "1", "hi")
        assert resp.status == 403

    @pytest.mark.asyncio
    async def test_not_connected(self):
        sender = _Sender(connected=False)
        resp = await SendGateway(_Accounts(), sender).send(TOKEN, "1", "hi")

        assert resp.status == 503
        assert sender.calls == []

    @pytest.mark.asyncio
    async def test_not_connected_checked_before_fields(self):
        resp = await SendGateway(_Accounts(), _Sender(connected=False)).send(TOKEN, None, None)
        assert resp.status == 503

    @pytest.mark.asyncio
    @pytest.mark.parametrize("number,message", [(None, "hi"), ("1", None), ("", "hi"), ("1", "")])
    async def test_missing_fields(self, number, message):
        resp = await SendGateway(_Accounts(), _Sender()).send(TOKEN, number, message)
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_success_increments_usage(self):
        accounts = _Accounts()
        sender = _Sender()
        resp = await SendGateway(accounts, sender).send(TOKEN, "+966 500-000000", "hi")

        assert resp.status == 200
        assert resp.body["success"] is True
        assert resp.body["messageId"] == "MSG1"
        assert sender.calls == [("+966 500-000000", "hi")]
        assert accounts.increments == ["acc-1"]

    @pytest.mark.asyncio
    async def test_whitespace_message_is_sent(self):
        sender = _Sender()
        resp = await SendGateway(_Accounts(), sender).send(TOKEN, "1", "  ")

        assert resp.status == 200
        assert sender.calls == [("1", "  ")]

    @pytest.mark.asyncio
    async def test_send_failure_is_500_without_usage(self):
        accounts = _Accounts()
        sender = _Sender(result=SendResult(success=False, error="rate limited"))
        resp = await SendGateway(accounts, sender).send(TOKEN, "1", "hi")

        assert resp.status == 500
        assert resp.body == {"success": False, "error": "rate limited"}
        assert accounts.increments == []
