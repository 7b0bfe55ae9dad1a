"""Centralized configuration — Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings live in config.toml. Environment variables override it
using ``__`` as the nested delimiter (e.g. ``WHATSAPP__RECONNECT_DELAY``).

Priority (highest wins): init args > env vars > .env > config.toml

Usage::

    from wabridge.config import get_settings

    s = get_settings()
    print(s.server.port)
    print(s.whatsapp.auth_dir)
"""

from __future__ import annotations

from functools import cached_property
from pathlib import Path

from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models — reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class ServerConfig(_StrictModel):
    host: str = "0.0.0.0"
    port: int = 5000


class WhatsAppConfig(_StrictModel):
    auth_dir: str = "auth_info"  # relative to the working directory or absolute
    reconnect_delay: float = 3.0  # seconds between a recoverable close and the next start()
    autostart: bool = False  # reconnect at boot when stored credentials exist

    @field_validator("reconnect_delay")
    @classmethod
    def clamp_reconnect_delay(cls, v: float) -> float:
        return max(0.0, v)


class AccountsConfig(_StrictModel):
    db_path: str = "data/accounts.db"


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


def _resolve(path: str) -> Path:
    p = Path(path)
    if not p.is_absolute():
        p = (Path.cwd() / p).resolve()
    return p


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    server: ServerConfig = ServerConfig()
    whatsapp: WhatsAppConfig = WhatsAppConfig()
    accounts: AccountsConfig = AccountsConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def auth_dir(self) -> Path:
        return _resolve(self.whatsapp.auth_dir)

    @cached_property
    def accounts_db_path(self) -> Path:
        return _resolve(self.accounts.db_path)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the cached Settings instance, loading it on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached Settings so the next get_settings() re-reads sources."""
    global _settings
    _settings = None
