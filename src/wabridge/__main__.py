"""Entry point for `python -m wabridge` / `wabridge`.

Subcommands:
    wabridge                        Run the service (default)
    wabridge serve                  Run the service
    wabridge pair                   Link a WhatsApp device from the terminal
    wabridge account create EMAIL   Create an account and print its access token
    wabridge account list           List accounts and their message counts
    wabridge account rotate EMAIL   Issue a new access token
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from wabridge.types import Closed, EngineEvent, Opened, QrReady


def _run() -> None:
    from wabridge.app import BridgeApp

    app = BridgeApp()
    asyncio.run(app.run())


async def _pair() -> int:
    from wabridge.config import get_settings
    from wabridge.credentials import CredentialStore
    from wabridge.engine_neonize import NeonizeEngine
    from wabridge.qr import render_qr_ascii

    credentials = CredentialStore(get_settings().auth_dir)
    if credentials.exists():
        print("✓ Already paired with WhatsApp")
        print(f"  To pair again, delete {credentials.directory} and run again.")
        return 0

    print("Scan the QR code with WhatsApp:")
    print("  1. Open WhatsApp on your phone")
    print("  2. Tap Settings → Linked Devices → Link a Device")
    print("  3. Point your camera at the QR code below\n")

    done = asyncio.Event()
    exit_code = 0

    async def on_event(event: EngineEvent) -> None:
        nonlocal exit_code
        match event:
            case QrReady(payload=payload):
                print(render_qr_ascii(payload), flush=True)
            case Opened(self_id=self_id):
                print(f"\n✓ Paired as {self_id}")
                print(f"  Credentials saved to {credentials.directory}")
                done.set()
            case Closed(reason=reason):
                print(f"\n✗ Pairing failed ({reason}). Please try again.")
                exit_code = 1
                done.set()

    handle = NeonizeEngine().open(credentials.prepare(), on_event)
    await handle.start()
    await done.wait()
    await handle.close()
    if exit_code:
        credentials.clear()
    return exit_code


async def _account(args: argparse.Namespace) -> int:
    from wabridge.accounts import DuplicateAccountError, SqliteAccountStore
    from wabridge.config import get_settings

    store = SqliteAccountStore(get_settings().accounts_db_path)
    await store.open()
    try:
        match args.account_command:
            case "create":
                try:
                    account = await store.create_account(args.email)
                except DuplicateAccountError as exc:
                    print(f"Error: {exc}", file=sys.stderr)
                    return 1
                print(f"Created account {account.email}")
                print(f"  access token: {account.access_token}")
            case "list":
                for account in await store.list_accounts():
                    print(f"{account.email}\t{account.message_count} messages\t{account.id}")
            case "rotate":
                account = await store.get_by_email(args.email)
                if account is None:
                    print(f"Error: no account for {args.email}", file=sys.stderr)
                    return 1
                token = await store.rotate_token(account.id)
                print(f"New access token for {account.email}: {token}")
        return 0
    finally:
        await store.close()


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="wabridge",
        description="WhatsApp HTTP/WebSocket bridge",
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("serve", help="Run the bridge service")
    sub.add_parser("pair", help="Link a WhatsApp device from the terminal")

    account = sub.add_parser("account", help="Manage API accounts")
    account_sub = account.add_subparsers(dest="account_command", required=True)
    create = account_sub.add_parser("create", help="Create an account")
    create.add_argument("email")
    account_sub.add_parser("list", help="List accounts")
    rotate = account_sub.add_parser("rotate", help="Issue a new access token")
    rotate.add_argument("email")

    args = parser.parse_args()

    match args.command:
        case "pair":
            try:
                sys.exit(asyncio.run(_pair()))
            except KeyboardInterrupt:
                print("\nPairing cancelled.")
                sys.exit(1)
        case "account":
            sys.exit(asyncio.run(_account(args)))
        case _:
            _run()


if __name__ == "__main__":
    main()
