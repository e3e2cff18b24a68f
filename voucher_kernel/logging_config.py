"""
Structured JSON logging for the voucher kernel.

Every line is one JSON object::

    {"ts": ..., "level": "INFO", "logger": "voucher_kernel.services.correction",
     "message": "correction_started", "correlation_id": ..., "record_uuid": ...,
     "user_id": "1", "producer": "voucher_kernel.correction", "row_count": 2}

The message is a snake_case event name.  Correction-scoped fields come from
LogContext; per-event fields come from ``extra``.  When a record carries an
exception, the coded error is flattened into ``exc_code``, ``exc_status``
and one ``exc_<attr>`` per public attribute, so a rejected correction can be
traced by record_uuid without parsing the message.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "LogContext",
    "StructuredFormatter",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, TextIO
from uuid import UUID

ROOT_LOGGER = "voucher_kernel"

# Fields that identify one correction attempt across every log line it emits
CONTEXT_FIELDS = ("correlation_id", "record_uuid", "user_id", "producer")

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("voucher_log_context", default=_EMPTY)


class LogContext:
    """Correction-scoped log fields, isolated per thread and per task."""

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(
        *,
        correlation_id: str | None = None,
        record_uuid: str | None = None,
        user_id: str | None = None,
        producer: str | None = None,
    ) -> Iterator[Mapping[str, str]]:
        """
        Overlay the given fields for the duration of the block.

        None leaves the enclosing value in place.  The enclosing context is
        restored on exit, including when the block raises.
        """
        given = {
            "correlation_id": correlation_id,
            "record_uuid": record_uuid,
            "user_id": user_id,
            "producer": producer,
        }
        merged = dict(_context.get())
        merged.update({name: str(value) for name, value in given.items() if value is not None})
        token = _context.set(MappingProxyType(merged))
        try:
            yield _context.get()
        finally:
            _context.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _json_default(value: Any) -> Any:
    """Amounts stay exact: Decimal("100.00") logs as "100.00", never a float."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    return repr(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
        fields["exc_status"] = getattr(exc, "status_code", None)
    for name, value in vars(exc).items():
        if not name.startswith("_"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; context fields win over ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = _context.get()
        payload.update(context)

        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS and name not in payload:
                payload[name] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """``voucher_kernel.<name>``; every kernel and tools module logs here."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


_installed: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str | None = None,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> logging.Handler:
    """
    Install the JSON handler on the ``voucher_kernel`` logger.

    The first call installs ``handler`` (or a stream handler on ``stream``,
    stderr by default) at ``level``, INFO when omitted.  Later calls keep
    the installed handler and only change the level when one is given, so
    the engine can call this unconditionally after the config has set it.

    Returns:
        The installed handler.
    """
    global _installed
    root = logging.getLogger(ROOT_LOGGER)
    if _installed is None:
        _installed = handler or logging.StreamHandler(stream or sys.stderr)
        _installed.setFormatter(StructuredFormatter())
        root.addHandler(_installed)
        root.propagate = False
        root.setLevel(logging.INFO if level is None else level)
    elif level is not None:
        root.setLevel(level)
    return _installed


def reset_logging() -> None:
    """Remove the installed handler. FOR TESTING ONLY."""
    global _installed
    root = logging.getLogger(ROOT_LOGGER)
    if _installed is not None:
        root.removeHandler(_installed)
        _installed = None
    root.setLevel(logging.WARNING)
