"""
Structured logging for boundary calls.

Records follow the OpenTelemetry Logging Data Model when rendered as JSON,
and a single ``key=value`` line when rendered for a terminal.

Usage::

    from ._logging import scoped_logger

    log = scoped_logger("render")
    log.debug("Render called", extra={"messages": 3})
    log.trace("Allocated host buffer", extra={"bytes": 120})

Environment::

    CHATBRIDGE_LOG_LEVEL=trace|debug|info|warn|error|fatal|off (default: warn)
    CHATBRIDGE_LOG_FORMAT=json|human (default: human if tty, json if piped)

Access tokens are never passed to the logger. Fetch calls log ``has_token``
instead of the value.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import MutableMapping
from datetime import datetime, timezone
from typing import Any

from ._version import __version__

__all__ = ["TRACE", "logger", "setup_logging", "scoped_logger"]

# Buffer allocate/free and memory snapshots
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_LEVEL_TO_SEVERITY = {
    TRACE: "TRACE",
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "FATAL",
}

_OFF = logging.CRITICAL + 10

_NAME_TO_LEVEL = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
    "off": _OFF,
}

# Levels that carry the emitting file and line
_CODE_LOCATION_LEVELS = {logging.DEBUG, logging.ERROR, logging.CRITICAL}

# LogRecord attributes that are not boundary attributes
_RECORD_FIELDS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "scope", "operation"}


def _infer_scope(logger_name: str) -> str:
    """Infer scope from logger name when not explicitly provided."""
    if "render" in logger_name:
        return "render"
    if "fetch" in logger_name:
        return "fetch"
    if "lifecycle" in logger_name or "processor" in logger_name:
        return "lifecycle"
    if "buffer" in logger_name or "binding" in logger_name or "runtime" in logger_name:
        return "boundary"
    if "collaborator" in logger_name:
        return "collaborator"
    return logger_name.split(".")[-1] if logger_name else "chatbridge"


def _attributes(record: logging.LogRecord) -> dict[str, Any]:
    """Scope, operation and ``extra`` fields of a record, in that order."""
    attributes: dict[str, Any] = {
        "scope": getattr(record, "scope", None) or _infer_scope(record.name)
    }
    operation = getattr(record, "operation", None)
    if operation:
        attributes["operation"] = operation
    for key, value in record.__dict__.items():
        if key not in _RECORD_FIELDS and not key.startswith("_"):
            attributes[key] = value
    return attributes


class JsonFormatter(logging.Formatter):
    """One OpenTelemetry log record per line."""

    def format(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        attributes = _attributes(record)
        if record.levelno in _CODE_LOCATION_LEVELS:
            attributes["code.filepath"] = record.filename
            attributes["code.lineno"] = record.lineno
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            attributes["exception.type"] = type(exc).__name__
            attributes["exception.message"] = str(exc)

        return json.dumps(
            {
                "timestamp": dt.isoformat(timespec="microseconds").replace("+00:00", "Z"),
                "severityText": _LEVEL_TO_SEVERITY.get(record.levelno, "INFO"),
                "body": record.getMessage(),
                "attributes": attributes,
                "resource": {"service.name": "chatbridge", "service.version": __version__},
            },
            separators=(",", ":"),
            default=str,
        )


class HumanFormatter(logging.Formatter):
    """
    Terminal output::

        12:00:01 DEBUG [render] Render called messages=3 (processor.py:310)
    """

    def format(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        attributes = _attributes(record)
        scope = attributes.pop("scope")
        severity = _LEVEL_TO_SEVERITY.get(record.levelno, "INFO")

        line = f"{dt:%H:%M:%S} {severity:<5} [{scope}] {record.getMessage()}"
        if attributes:
            line += " " + " ".join(f"{key}={value}" for key, value in attributes.items())
        if record.levelno in _CODE_LOCATION_LEVELS:
            line += f" ({record.filename}:{record.lineno})"
        if record.exc_info and record.exc_info[1] is not None:
            line += f" exception={type(record.exc_info[1]).__name__}"
        return line


logger = logging.getLogger("chatbridge")


def parse_level(level: str | int) -> int:
    """Resolve a level name (``"trace"``, ``"warn"``, ...) or constant to an int."""
    if isinstance(level, str):
        return _NAME_TO_LEVEL.get(level.lower(), logging.INFO)
    return level


def _create_handler(format: str | None = None) -> logging.Handler:
    fmt = (format or os.environ.get("CHATBRIDGE_LOG_FORMAT") or "").lower()
    if not fmt:
        fmt = "human" if sys.stderr.isatty() else "json"
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if fmt == "json" else HumanFormatter())
    return handler


def setup_logging(
    level: str | int = "INFO",
    format: str | None = None,
) -> None:
    """
    Configure chatbridge logging.

    Parameters
    ----------
    level : str or int, default "INFO"
        Log level. Can be "TRACE", "DEBUG", "INFO", "WARNING", "ERROR",
        "FATAL", or a logging constant like ``logging.DEBUG``.

    format : str, optional
        Log format. Either "json" or "human". If not specified,
        uses CHATBRIDGE_LOG_FORMAT env var or auto-detects based on TTY.

    Examples
    --------
    Boundary-level tracing, machine readable::

        >>> from chatbridge._logging import setup_logging
        >>> setup_logging("TRACE", format="json")
    """
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    logger.addHandler(_create_handler(format))
    logger.setLevel(parse_level(level))


class _ScopedLoggerAdapter(logging.LoggerAdapter):
    """Adds a fixed scope to every record and exposes ``trace()``."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def trace(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(TRACE, msg, *args, **kwargs)


def scoped_logger(scope: str) -> _ScopedLoggerAdapter:
    """
    Create a logger adapter with a fixed scope.

    Parameters
    ----------
    scope : str
        The scope name (e.g., "render", "fetch", "lifecycle").

    Examples
    --------
    ::

        from chatbridge._logging import scoped_logger
        log = scoped_logger("fetch")
        log.debug("Fetching template", extra={"model": "Qwen/Qwen3-0.6B"})
    """
    return _ScopedLoggerAdapter(logger, {"scope": scope})


# Library default: leave user-configured handlers alone.
if not logger.handlers:
    logger.addHandler(_create_handler())
    logger.setLevel(
        _NAME_TO_LEVEL.get(os.environ.get("CHATBRIDGE_LOG_LEVEL", "warn").lower(), logging.WARNING)
    )
