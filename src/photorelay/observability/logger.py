"""JSON-lines logging for the relay and the upload client.

One record is one JSON object on one line.  Structured fields travel in
``extra={"extra_fields": {...}}``; raw image payloads that end up in those
fields are summarised by length rather than written out.

Example line::

    {"ts": "2025-07-01T12:00:00.123456+00:00", "level": "INFO",
     "logger": "photorelay.relay", "message": "Upload completed",
     "op": "relay_upload", "file_name": "IMG_0042.jpg",
     "processing_time_ms": 812}

Usage::

    from photorelay.observability import bind, get_logger

    log = get_logger("photorelay.relay")
    log.info("Upload completed", extra={"extra_fields": {"file_name": "a.jpg"}})

    session_log = bind(log, session_id="4f1c")
    session_log.info("Batch sent", extra={"extra_fields": {"batch": 2}})

The default level can be set with the ``PHOTORELAY_LOG_LEVEL`` environment
variable.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Mapping, MutableMapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

LOG_LEVEL_ENV = "PHOTORELAY_LOG_LEVEL"

_CORE_KEYS = frozenset({"ts", "level", "logger", "message", "exception", "stack_info"})


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<{len(value)} bytes>"
    if isinstance(value, Enum):
        return value.value
    return str(value)


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON line.

    ``ts``, ``level``, ``logger`` and ``message`` are always present.
    Extra fields are merged at the top level; one that collides with a
    core key is kept under ``extra_<key>`` instead.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        fields: Mapping[str, Any] | None = getattr(record, "extra_fields", None)
        for key, value in (fields or {}).items():
            entry[f"extra_{key}" if key in _CORE_KEYS else key] = value

        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=_json_default)


class BoundLogger(logging.LoggerAdapter):
    """Logger adapter that adds fixed fields (e.g. a session id) to every record."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["extra_fields"] = {**self.extra, **extra.get("extra_fields", {})}
        kwargs["extra"] = extra
        return msg, kwargs


def bind(logger: logging.Logger, **fields: Any) -> BoundLogger:
    """Return an adapter over *logger* that always logs *fields*."""
    return BoundLogger(logger, fields)


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, "DEBUG")
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level!r}")
        return resolved
    return level


_configured_loggers: set[str] = set()


def get_logger(
    name: str = "photorelay",
    *,
    level: int | str | None = None,
    stream: Any | None = None,
) -> logging.Logger:
    """Get or create a JSON-lines logger.

    Parameters
    ----------
    name:
        Logger name, conventionally ``photorelay.<component>``.
    level:
        Minimum level as an ``int`` or case-insensitive name.  Defaults to
        ``$PHOTORELAY_LOG_LEVEL``, then ``DEBUG``.
    stream:
        Handler stream.  Defaults to ``sys.stderr``.

    Returns
    -------
    logging.Logger
        Configured on first use only; later calls with the same *name*
        return it unchanged.

    Raises
    ------
    ValueError
        If *level* is a name :mod:`logging` does not know.
    """
    logger = logging.getLogger(name)
    if name in _configured_loggers:
        return logger

    logger.setLevel(_resolve_level(level))
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    _configured_loggers.add(name)
    return logger
