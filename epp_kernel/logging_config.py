"""
Structured JSON logging for the EPP kernel.

Every record leaves the ``epp_kernel`` logger hierarchy as one JSON object:
an envelope (ts, level, logger, message), the correlation fields bound in
``LogContext`` (order, installment, payroll batch, actor), the record's
``extra`` mapping, and for exceptions the typed error's ``code`` plus its
structured attributes as ``exc_<name>``.

Decimals are written as strings so amounts survive the round trip exactly.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "epp_kernel"

# ---------------------------------------------------------------------------
# Correlation fields
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS = ("correlation_id", "actor_id", "order_id", "installment_id", "batch_id")

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"epp_log_{name}", default=None) for name in _CONTEXT_FIELDS
}


class LogContext:
    """Correlation fields attached to every record logged in this context.

    Values live in ContextVars, so threads and asyncio tasks each see their
    own.  Unknown field names passed to ``set`` or ``bind`` are ignored.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        for name, value in fields.items():
            if value is not None and name in _context_vars:
                _context_vars[name].set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: var.get()
            for name, var in _context_vars.items()
            if var.get() is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Set fields for the duration of the block, then restore them."""
        tokens: list[tuple[ContextVar[str | None], Token]] = []
        for name, value in fields.items():
            var = _context_vars.get(name)
            if value is not None and var is not None:
                tokens.append((var, var.set(str(value))))
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord carries; anything else came in through extra=.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON line per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))
        return json.dumps(payload, default=_json_default)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # EppKernelError subclasses keep their context as plain attributes.
        for name, value in vars(exc).items():
            if not name.startswith("_") and name != "code":
                fields[f"exc_{name}"] = value
        fields["traceback"] = self.formatException(record.exc_info)
        return fields


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger under the epp_kernel namespace, e.g. ``get_logger("services.ledger")``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the epp_kernel hierarchy.  Only the first call counts."""
    global _configured
    with _lock:
        if _configured:
            return

        target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())

        kernel_logger = logging.getLogger(_LOGGER_PREFIX)
        kernel_logger.setLevel(level)
        kernel_logger.propagate = False
        kernel_logger.addHandler(target)
        _configured = True


def reset_logging() -> None:
    """Forget the configuration and drop handlers (tests only)."""
    global _configured
    with _lock:
        kernel_logger = logging.getLogger(_LOGGER_PREFIX)
        kernel_logger.handlers.clear()
        kernel_logger.setLevel(logging.WARNING)
        _configured = False
