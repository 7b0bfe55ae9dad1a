"""structlog setup for wabridge.

The logger works from import time, before Settings exist. Its starting level
comes from ``LOGGING__LEVEL``, the variable Settings also reads, and
``set_level`` re-applies the final value once config.toml has been loaded.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

LEVEL_ENV = "LOGGING__LEVEL"


def _to_level(name: str) -> int:
    return logging.getLevelNamesMapping().get(name.strip().upper(), logging.INFO)


def set_level(level_name: str) -> None:
    """Apply ``level_name`` to the root logger that structlog filters against.

    Unknown names fall back to INFO.
    """
    logging.getLogger().setLevel(_to_level(level_name))


def _configure(level_name: str) -> structlog.stdlib.BoundLogger:
    logging.basicConfig(format="%(message)s", stream=sys.stderr)
    set_level(level_name)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.set_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger("wabridge")


logger = _configure(os.environ.get(LEVEL_ENV, "INFO"))


def _log_crash(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: object,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logger.critical("wabridge crashed", exc_info=(exc_type, exc_value, exc_tb))
    sys.exit(1)


sys.excepthook = _log_crash
