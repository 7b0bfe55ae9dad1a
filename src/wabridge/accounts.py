"""Account storage — access tokens and per-account send counters.

The bridge only needs two operations on the hot path (token lookup and usage
increment); the rest exists for the ``wabridge account`` CLI.
"""

from __future__ import annotations

import secrets
import sqlite3
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

import aiosqlite

from wabridge.logger import logger
from wabridge.types import Account, WabridgeError

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    access_token TEXT NOT NULL UNIQUE,
    message_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_accounts_token ON accounts(access_token);
"""

_COLUMNS = "id, email, access_token, message_count, created_at"


class DuplicateAccountError(WabridgeError):
    pass


class AccountNotFoundError(WabridgeError):
    pass


class AccountStore(Protocol):
    async def lookup_by_token(self, token: str) -> Account | None: ...

    async def increment_usage(self, account_id: str) -> None: ...


def generate_access_token() -> str:
    return secrets.token_hex(32)


def _row_to_account(row: aiosqlite.Row) -> Account:
    return Account(
        id=row["id"],
        email=row["email"],
        access_token=row["access_token"],
        message_count=row["message_count"],
        created_at=row["created_at"],
    )


class SqliteAccountStore:
    """AccountStore on a single aiosqlite connection.

    Pass ``":memory:"`` as the path for a throwaway store.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = str(path)
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    def _get_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Account store not opened. Call open() first.")
        return self._db

    # --- Lookups ---

    async def lookup_by_token(self, token: str) -> Account | None:
        if not token:
            return None
        db = self._get_db()
        cursor = await db.execute(
            f"SELECT {_COLUMNS} FROM accounts WHERE access_token = ?", (token,)
        )
        row = await cursor.fetchone()
        return _row_to_account(row) if row else None

    async def get_by_email(self, email: str) -> Account | None:
        db = self._get_db()
        cursor = await db.execute(
            f"SELECT {_COLUMNS} FROM accounts WHERE email = ?", (email.strip().lower(),)
        )
        row = await cursor.fetchone()
        return _row_to_account(row) if row else None

    async def list_accounts(self) -> list[Account]:
        db = self._get_db()
        cursor = await db.execute(f"SELECT {_COLUMNS} FROM accounts ORDER BY created_at")
        return [_row_to_account(row) for row in await cursor.fetchall()]

    # --- Writes ---

    async def create_account(self, email: str) -> Account:
        """Create an account with a fresh access token."""
        email = email.strip().lower()
        account = Account(
            id=str(uuid.uuid4()),
            email=email,
            access_token=generate_access_token(),
            message_count=0,
            created_at=datetime.now(UTC).isoformat(),
        )
        db = self._get_db()
        try:
            await db.execute(
                f"INSERT INTO accounts ({_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                (
                    account.id,
                    account.email,
                    account.access_token,
                    account.message_count,
                    account.created_at,
                ),
            )
            await db.commit()
        except sqlite3.IntegrityError as exc:
            await db.rollback()
            raise DuplicateAccountError(f"Account already exists: {email}") from exc
        logger.info("Account created", account_id=account.id, email=email)
        return account

    async def rotate_token(self, account_id: str) -> str:
        """Replace the account's access token and return the new one."""
        token = generate_access_token()
        db = self._get_db()
        cursor = await db.execute(
            "UPDATE accounts SET access_token = ? WHERE id = ?", (token, account_id)
        )
        await db.commit()
        if cursor.rowcount == 0:
            raise AccountNotFoundError(f"No account with id {account_id}")
        logger.info("Access token rotated", account_id=account_id)
        return token

    async def increment_usage(self, account_id: str) -> None:
        db = self._get_db()
        await db.execute(
            "UPDATE accounts SET message_count = message_count + 1 WHERE id = ?",
            (account_id,),
        )
        await db.commit()
