"""
Logging setup for the engine.

All engine loggers live under the "tabq" namespace. One stream handler is
attached to that namespace the first time a logger is requested, so the
uvicorn and root loggers are left alone.
"""

from __future__ import annotations

import logging
import os
from typing import Final

ROOT_LOGGER: Final[str] = "tabq"
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def _level_from_env() -> int:
    level = logging.getLevelName(os.getenv("TABQ_LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _configure_root() -> None:
    global _configured
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(_level_from_env())
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Logger for a module, placed under the "tabq" namespace.

    Examples:
        >>> get_logger("tabq.state.store").name
        'tabq.state.store'

        >>> get_logger("scripts.seed").name
        'tabq.scripts.seed'
    """
    if not _configured:
        _configure_root()
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
