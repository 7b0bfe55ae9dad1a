"""Tests for the BridgeApp startup and shutdown sequence."""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiohttp
import pytest
from conftest import FakeEngine

from wabridge.app import BridgeApp
from wabridge.config import Settings, reset_settings
from wabridge.types import Phase


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    reset_settings()
    yield
    reset_settings()


def _settings(tmp_path: Path, *, autostart: bool = False) -> Settings:
    return Settings(
        server={"host": "127.0.0.1", "port": 0},
        whatsapp={"auth_dir": str(tmp_path / "auth"), "autostart": autostart},
        accounts={"db_path": str(tmp_path / "accounts.db")},
    )


async def _wait_until_serving(app: BridgeApp, task: asyncio.Task) -> None:
    for _ in range(200):
        if app._http_runner is not None and app.manager is not None:
            return
        if task.done():
            task.result()
        await asyncio.sleep(0.01)
    raise AssertionError("app did not start serving")


@pytest.mark.asyncio
async def test_serves_health_and_shuts_down(tmp_path: Path):
    engine = FakeEngine()
    app = BridgeApp(_settings(tmp_path), engine=engine)
    task = asyncio.ensure_future(app.run())
    await _wait_until_serving(app, task)

    port = app._http_runner.addresses[0][1]
    async with aiohttp.ClientSession() as session:
        async with session.get(f"http://127.0.0.1:{port}/api/health") as resp:
            assert resp.status == 200
            data = await resp.json()
    assert data["whatsapp"] == {"connected": False, "phase": "idle"}

    await app._shutdown("SIGTERM")
    await asyncio.wait_for(task, timeout=5)
    assert engine.handles == []


@pytest.mark.asyncio
async def test_autostart_with_stored_credentials(tmp_path: Path):
    settings = _settings(tmp_path, autostart=True)
    (tmp_path / "auth").mkdir()
    (tmp_path / "auth" / "session.db").write_text("session")

    engine = FakeEngine()
    app = BridgeApp(settings, engine=engine)
    task = asyncio.ensure_future(app.run())
    await _wait_until_serving(app, task)
    for _ in range(200):
        if engine.handles and engine.last.started:
            break
        await asyncio.sleep(0.01)

    assert len(engine.handles) == 1
    assert app.manager.state.phase == Phase.CONNECTING

    await app._shutdown("SIGTERM")
    await asyncio.wait_for(task, timeout=5)
    # Shutdown keeps the linked session
    assert (tmp_path / "auth" / "session.db").exists()
    assert engine.last.closed


@pytest.mark.asyncio
async def test_autostart_without_credentials_stays_idle(tmp_path: Path):
    engine = FakeEngine()
    app = BridgeApp(_settings(tmp_path, autostart=True), engine=engine)
    task = asyncio.ensure_future(app.run())
    await _wait_until_serving(app, task)

    assert engine.handles == []
    assert app.manager.state.phase == Phase.IDLE

    await app._shutdown("SIGTERM")
    await asyncio.wait_for(task, timeout=5)


@pytest.mark.asyncio
async def test_shutdown_drains_pending_commands(tmp_path: Path):
    engine = FakeEngine()
    app = BridgeApp(_settings(tmp_path), engine=engine)
    task = asyncio.ensure_future(app.run())
    await _wait_until_serving(app, task)

    app.commands.dispatch('{"action": "start"}')
    await app._shutdown("SIGTERM")
    await asyncio.wait_for(task, timeout=5)

    assert len(engine.handles) == 1
    assert engine.last.started
    assert engine.last.closed
    assert app.manager.state.phase is Phase.IDLE
