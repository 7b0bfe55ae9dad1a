"""Main orchestrator — wires the connection manager, hub, and HTTP server."""

from __future__ import annotations

import asyncio
import os
import signal

from aiohttp import web

from wabridge.accounts import SqliteAccountStore
from wabridge.commands import CommandRouter
from wabridge.config import Settings, get_settings
from wabridge.connection import ConnectionManager
from wabridge.credentials import CredentialStore
from wabridge.engine import ProtocolEngine
from wabridge.gateway import SendGateway
from wabridge.http_server import AppDeps, start_http_server
from wabridge.logger import logger, set_level

# Seconds a graceful shutdown may take before the process force-exits
SHUTDOWN_WATCHDOG = 12


class BridgeApp:
    def __init__(
        self,
        settings: Settings | None = None,
        engine: ProtocolEngine | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._engine = engine
        self.accounts = SqliteAccountStore(self.settings.accounts_db_path)
        self.credentials = CredentialStore(self.settings.auth_dir)
        self.manager: ConnectionManager | None = None
        self.commands: CommandRouter | None = None
        self._http_runner: web.AppRunner | None = None
        self._stopped = asyncio.Event()
        self._shutting_down = False

    def _build_engine(self) -> ProtocolEngine:
        if self._engine is not None:
            return self._engine
        # Imported lazily: neonize loads its native library at import time
        from wabridge.engine_neonize import NeonizeEngine

        return NeonizeEngine()

    async def _shutdown(self, sig_name: str) -> None:
        """Graceful shutdown handler. Second signal force-exits."""
        if self._shutting_down:
            logger.info("Force shutdown")
            os._exit(1)
        self._shutting_down = True
        logger.info("Shutdown signal received", signal=sig_name)

        loop = asyncio.get_running_loop()
        watchdog = loop.call_later(SHUTDOWN_WATCHDOG, lambda: os._exit(1))

        if self.commands:
            await self.commands.drain()
        if self.manager:
            await self.manager.shutdown()
        if self._http_runner:
            await self._http_runner.cleanup()
        await self.accounts.close()
        watchdog.cancel()
        self._stopped.set()

    async def run(self) -> None:
        """Main entry point — startup sequence."""
        s = self.settings
        set_level(s.logging.level)

        await self.accounts.open()
        self.manager = ConnectionManager(
            self._build_engine(),
            self.credentials,
            reconnect_delay=s.whatsapp.reconnect_delay,
        )
        self.commands = CommandRouter(self.manager)
        deps = AppDeps(
            manager=self.manager,
            hub=self.manager.hub,
            commands=self.commands,
            gateway=SendGateway(self.accounts, self.manager),
        )
        self._http_runner = await start_http_server(deps, s.server.host, s.server.port)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.ensure_future(self._shutdown(s.name)),
            )

        if s.whatsapp.autostart and self.credentials.exists():
            logger.info("Stored WhatsApp session found, connecting")
            await self.manager.start()

        await self._stopped.wait()
        logger.info("wabridge stopped")
