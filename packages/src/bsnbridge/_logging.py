"""Structured JSON log formatter and logging configuration.

bsnbridge runs inside a host monitoring process, usually as a
long-lived background poller whose output ends up in a log
aggregator.  :class:`JsonFormatter` emits one JSON object per record
(JSON Lines / NDJSON) carrying the ``service`` and ``version`` of the
bridge plus the emitting ``thread``, so poller output can be told
apart from caller-thread output.

The formatter is built on the stdlib ``json`` module; the field
names follow this project's conventions rather than a third-party
library's defaults.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Any

from bsnbridge._settings import LoggingSettings

_BYTES_PER_MB = 1024 * 1024

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"


# Per-request INFO chatter; capped at WARNING unless the root level is DEBUG.
_CHATTY_LOGGERS = ("httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects (NDJSON).

    Fields, in order: ``timestamp`` (UTC, ISO 8601), ``level``,
    ``logger``, ``thread``, ``message``, ``service``, then
    ``version`` when set, ``exception`` when a traceback is attached
    and ``stack_info`` when requested.

    Args:
        service: Name stamped on every line.
        version: Bridge version; left out when empty.
    """

    def __init__(self, *, service: str = "", version: str = "") -> None:
        super().__init__()
        self._service = service
        self._version = version

    def format(self, record: logging.LogRecord) -> str:
        """One JSON object per record; ``json.dumps`` escapes newlines."""
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
            "service": self._service,
        }
        if self._version:
            entry["version"] = self._version
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(entry, default=str)


def build_formatter(
    settings: LoggingSettings,
    *,
    service: str,
    version: str = "",
) -> logging.Formatter:
    """Formatter for ``settings.format``: JSON lines or plain text."""
    if settings.format == "json":
        return JsonFormatter(service=service, version=version)
    return logging.Formatter(_TEXT_FORMAT)


def _build_handlers(settings: LoggingSettings) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.file is not None:
        handlers.append(
            RotatingFileHandler(
                settings.file,
                maxBytes=settings.max_file_size_mb * _BYTES_PER_MB,
                backupCount=settings.backup_count,
                encoding="utf-8",
            )
        )
    return handlers


def configure_logging(
    settings: LoggingSettings,
    *,
    service: str,
    version: str = "",
) -> None:
    """Route the root logger to stderr (and optionally a rotating file).

    Existing root handlers are removed first, so calling this twice
    does not duplicate output.  The file sink rotates at
    ``settings.max_file_size_mb`` and keeps ``settings.backup_count``
    generations.  ``httpx``/``httpcore`` are capped at WARNING unless
    the level is DEBUG.

    Args:
        settings: Level, format and optional file sink.
        service: Stamped on JSON lines.
        version: Stamped on JSON lines when non-empty.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    formatter = build_formatter(settings, service=service, version=version)
    for handler in _build_handlers(settings):
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(settings.level)

    chatty_level = logging.DEBUG if settings.level == "DEBUG" else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(chatty_level)
