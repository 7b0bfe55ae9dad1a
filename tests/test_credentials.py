"""Tests for the on-disk credential store."""

from __future__ import annotations

from unittest.mock import patch

from wabridge.credentials import CredentialStore


def test_prepare_creates_directory(credentials: CredentialStore):
    path = credentials.prepare()

    assert credentials.directory.is_dir()
    assert path.parent == credentials.directory
    assert not credentials.exists()


def test_exists_after_engine_writes_session(credentials: CredentialStore):
    credentials.prepare().write_text("session")
    assert credentials.exists()


def test_clear_removes_everything(credentials: CredentialStore):
    credentials.prepare().write_text("session")
    (credentials.directory / "pre-key-1.json").write_text("{}")

    credentials.clear()

    assert not credentials.directory.exists()
    assert not credentials.exists()


def test_clear_missing_directory_is_noop(credentials: CredentialStore):
    credentials.clear()
    assert not credentials.directory.exists()


def test_clear_swallows_os_errors(credentials: CredentialStore):
    credentials.prepare()
    with patch("wabridge.credentials.shutil.rmtree", side_effect=PermissionError("denied")):
        credentials.clear()
    assert credentials.directory.exists()
