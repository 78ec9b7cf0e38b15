from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

# Standard log record attributes that should not be treated as "extra" context.
_STANDARD_LOG_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "exc_info",
        "exc_text",
        "stack_info",
        "taskName",
        "asctime",
        "level_color",
        "name_color",
        "source_color",
        "reset",
        "color_message",
    }
)

_LOG_CONTEXT: ContextVar[dict[str, Any] | None] = ContextVar("log_context", default=None)

DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

APP_LOGGER_PREFIX = "recap"

# Keep SDK chatter out of DEBUG runs unless explicitly overridden.
_DEFAULT_THIRD_PARTY_LEVELS: dict[str, str] = {
    "uvicorn": "WARNING",
    "uvicorn.error": "INFO",
    "uvicorn.access": "WARNING",
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "openai": "WARNING",
    "groq": "WARNING",
    "asyncpg": "WARNING",
    "supabase": "WARNING",
    "postgrest": "WARNING",
    "gotrue": "WARNING",
    "supabase_auth": "WARNING",
    "realtime": "WARNING",
    "storage3": "WARNING",
}

# Third-party loggers that are allowed to emit below WARNING.
_ALLOW_BELOW_WARNING: frozenset[str] = frozenset({"uvicorn.error"})

_COLOR_FORMAT_WITH_SOURCE = (
    "%(level_color)s%(asctime)s | %(levelname)s%(reset)s | "
    "%(name_color)s%(name)s%(reset)s | "
    "%(source_color)s%(filename)s:%(lineno)d%(reset)s | "
    "%(level_color)s%(message)s%(reset)s"
)
_COLOR_FORMAT = (
    "%(level_color)s%(asctime)s | %(levelname)s%(reset)s | "
    "%(name_color)s%(name)s%(reset)s | "
    "%(level_color)s%(message)s%(reset)s"
)
_PLAIN_FORMAT_WITH_SOURCE = "%(asctime)s | %(levelname)s | %(name)s | %(filename)s:%(lineno)d | %(message)s"
_PLAIN_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _matches(name: str, prefix: str) -> bool:
    return name == prefix or name.startswith(prefix + ".")


def _is_app_logger(name: str) -> bool:
    return name == "__main__" or _matches(name, APP_LOGGER_PREFIX)


class ContextInjectionFilter(logging.Filter):
    """Copies the active ``log_context`` fields onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _LOG_CONTEXT.get()
        if not context:
            return True

        for key, value in context.items():
            if key in _STANDARD_LOG_RECORD_ATTRS or hasattr(record, key):
                continue
            setattr(record, key, value)
        return True


class ThirdPartyLevelFilter(logging.Filter):
    """Drops third-party records below their configured threshold."""

    def __init__(self, third_party_levels: Mapping[str, int]) -> None:
        super().__init__()
        self.third_party_levels = dict(third_party_levels)

    def match_level(self, name: str) -> int | None:
        """Return the level of the most specific matching prefix, if any."""

        best_level: int | None = None
        best_len = -1
        for prefix, level in self.third_party_levels.items():
            if _matches(name, prefix) and len(prefix) > best_len:
                best_level = level
                best_len = len(prefix)
        return best_level

    def filter(self, record: logging.LogRecord) -> bool:
        if _is_app_logger(record.name):
            return True

        threshold = self.match_level(record.name)
        if threshold is None:
            threshold = logging.WARNING
        if threshold < logging.WARNING and not any(_matches(record.name, p) for p in _ALLOW_BELOW_WARNING):
            threshold = logging.WARNING
        return record.levelno >= threshold


class ContextFormatter(logging.Formatter):
    """Appends non-standard record fields as ``[key=value ...]``."""

    def format(self, record: logging.LogRecord) -> str:
        base_message = super().format(record)
        extra_fields = {key: value for key, value in record.__dict__.items() if key not in _STANDARD_LOG_RECORD_ATTRS}
        if not extra_fields:
            return base_message

        context_str = " ".join(f"{key}={value}" for key, value in extra_fields.items())
        return f"{base_message} [{context_str}]"


class ColorFormatter(ContextFormatter):
    _RESET = "\x1b[0m"
    _LEVEL_COLORS = {
        "DEBUG": "\x1b[36m",
        "INFO": "\x1b[32m",
        "WARNING": "\x1b[33m",
        "ERROR": "\x1b[31m",
        "CRITICAL": "\x1b[1;31m",
    }
    _NAME_COLOR = "\x1b[34m"
    _SOURCE_COLOR = "\x1b[94m"

    def format(self, record: logging.LogRecord) -> str:
        record.level_color = self._LEVEL_COLORS.get(record.levelname, "")  # type: ignore[attr-defined]
        record.name_color = self._NAME_COLOR  # type: ignore[attr-defined]
        record.source_color = self._SOURCE_COLOR  # type: ignore[attr-defined]
        record.reset = self._RESET  # type: ignore[attr-defined]
        return super().format(record)


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Temporarily attach context fields to all log lines in this scope."""

    current = _LOG_CONTEXT.get() or {}
    token = _LOG_CONTEXT.set({**current, **kwargs})
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


def get_log_context() -> Mapping[str, Any]:
    return _LOG_CONTEXT.get() or {}


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _level_from_name(level_name: str, fallback: int) -> int:
    level = logging.getLevelName(level_name.strip().upper())
    return level if isinstance(level, int) else fallback


def _resolve_third_party_levels(root_level: int, overrides: Mapping[str, str] | None) -> dict[str, int]:
    merged = {**_DEFAULT_THIRD_PARTY_LEVELS, **(overrides or {})}
    levels: dict[str, int] = {}
    for name, level_name in merged.items():
        level = _level_from_name(level_name, root_level)
        if name not in _ALLOW_BELOW_WARNING:
            level = max(level, logging.WARNING)
        levels[name] = level
    return levels


def _build_formatter(*, use_color: bool, include_source: bool) -> logging.Formatter:
    if use_color:
        fmt = _COLOR_FORMAT_WITH_SOURCE if include_source else _COLOR_FORMAT
        return ColorFormatter(fmt, datefmt=DEFAULT_DATE_FORMAT)
    fmt = _PLAIN_FORMAT_WITH_SOURCE if include_source else _PLAIN_FORMAT
    return ContextFormatter(fmt, datefmt=DEFAULT_DATE_FORMAT)


def setup_logging(
    *,
    log_level: str | None = None,
    third_party_levels: Mapping[str, str] | None = None,
) -> None:
    """
    Configure global, context-aware logging for the API and the worker.

    Environment variables:
    - LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
    - LOG_COLOR: enable ANSI colors (default: auto when TTY)
    - LOG_SOURCE: include filename:lineno (default: on)
    """
    root_level = _level_from_name(log_level or os.getenv("LOG_LEVEL", "INFO"), logging.INFO)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.captureWarnings(True)

    levels = _resolve_third_party_levels(root_level, third_party_levels)
    level_filter = ThirdPartyLevelFilter(levels)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        _build_formatter(
            use_color=_env_flag("LOG_COLOR", sys.stdout.isatty()),
            include_source=_env_flag("LOG_SOURCE", True),
        )
    )
    handler.addFilter(ContextInjectionFilter())
    handler.addFilter(level_filter)
    root_logger.addHandler(handler)
    root_logger.setLevel(root_level)

    for name in list(logging.root.manager.loggerDict):
        existing = logging.getLogger(name)
        existing.handlers = []
        existing.propagate = True
        if _is_app_logger(name):
            existing.setLevel(root_level)
        else:
            matched = level_filter.match_level(name)
            existing.setLevel(matched if matched is not None else logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"log_level": logging.getLevelName(root_level)},
    )
