"""On-disk session material for the protocol engine.

The directory is opaque to the rest of wabridge: it either exists (a paired
session may resume) or it does not (the next connection starts a fresh
pairing).
"""

from __future__ import annotations

import shutil
from pathlib import Path

from wabridge.logger import logger

SESSION_DB_NAME = "session.db"


class CredentialStore:
    def __init__(self, directory: Path) -> None:
        self.directory = directory

    @property
    def session_path(self) -> Path:
        return self.directory / SESSION_DB_NAME

    def exists(self) -> bool:
        return self.session_path.exists()

    def prepare(self) -> Path:
        """Create the directory if needed and return the session DB path."""
        self.directory.mkdir(parents=True, exist_ok=True)
        return self.session_path

    def clear(self) -> None:
        """Remove all stored session material.

        Failures are logged rather than raised: a wipe runs during teardown,
        which must always complete.
        """
        if not self.directory.exists():
            return
        try:
            shutil.rmtree(self.directory)
            logger.info("Cleared WhatsApp credentials", path=str(self.directory))
        except OSError as exc:
            logger.error(
                "Failed to clear WhatsApp credentials", path=str(self.directory), err=str(exc)
            )
