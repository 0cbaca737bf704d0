"""Tagged logging helper for the analysis core.

Every component logs through ``log_event`` so that console output carries a
level, a component tag and ``key=value`` fields.
"""
from __future__ import annotations

import logging
from typing import Any

_logger = logging.getLogger("silentium")
if not _logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[%(levelname)s][%(tag)s] %(message)s")
    handler.setFormatter(formatter)
    _logger.addHandler(handler)
    _logger.setLevel(logging.INFO)

_LEVEL_ALIASES = {"WARN": "WARNING"}


class _TagAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: dict[str, Any]):
        tag = kwargs.pop("tag", "Core")
        kwargs.setdefault("extra", {})["tag"] = tag
        return msg, kwargs


_logger_adapter = _TagAdapter(_logger, {})


def _level_value(level: str | None) -> int:
    level_name = (level or "INFO").upper()
    level_name = _LEVEL_ALIASES.get(level_name, level_name)
    value = logging.getLevelName(level_name)
    return value if isinstance(value, int) else logging.INFO


def log_event(level: str, tag: str, message: str, **fields: Any) -> None:
    """Log a message with level+tag, appending key=value fields when provided."""
    level_val = _level_value(level)
    if not _logger.isEnabledFor(level_val):
        return
    if fields:
        extras = " ".join(f"{k}={v}" for k, v in fields.items())
        message = f"{message} | {extras}"
    _logger_adapter.log(level_val, message, tag=tag)


def set_log_level(level: str) -> None:
    """Set global log level (DEBUG/INFO/WARNING/ERROR)."""
    _logger.setLevel(_level_value(level))


def get_log_level() -> str:
    """Return current global log level name."""
    return logging.getLevelName(_logger.level)
