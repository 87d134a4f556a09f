"""
Structured JSON logging (``grants_kernel.logging_config``).

Every logger under ``grants_kernel`` writes one JSON object per line.
Request-scoped fields (tenant, actor, proposal, correlation and trace ids)
are held in a single context variable and merged into each record, so a
service method binds them once and every log line below it carries them.

Typical use in a service::

    with LogContext.for_actor(actor, proposal_id):
        ...
        logger.info("proposal_transitioned", extra={"version": 3})
"""

__all__ = [
    "CONTEXT_FIELDS",
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "tenant_id",
    "actor_id",
    "proposal_id",
    "trace_id",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("grants_log_context", default=_EMPTY)


def _merged(fields: Mapping[str, Any]) -> Mapping[str, str]:
    current = dict(_context.get())
    for name, value in fields.items():
        if name in CONTEXT_FIELDS and value is not None:
            current[name] = str(value)
    return MappingProxyType(current)


class LogContext:
    """Request-scoped log fields.

    Backed by a ``ContextVar``: each thread and each asyncio task sees its
    own fields.  Worker threads start with an empty context.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Merge ``fields`` into the current context.  ``None`` is skipped."""
        unknown = sorted(set(fields) - set(CONTEXT_FIELDS))
        if unknown:
            raise TypeError(f"Unknown log context fields: {unknown}")
        _context.set(_merged(fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Set ``fields`` inside a ``with`` block and restore them after.

        Values are stringified, so UUIDs can be passed directly.  Names that
        are not context fields are ignored.
        """
        token = _context.set(_merged(fields))
        try:
            yield
        finally:
            _context.reset(token)

    @staticmethod
    def for_actor(actor: Any, proposal_id: Any = None):
        """Bind the acting tenant and user (an ``ActorContext``) and the proposal."""
        return LogContext.bind(
            tenant_id=actor.tenant_id,
            actor_id=actor.actor_id,
            proposal_id=proposal_id,
        )


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _to_json(obj: Any) -> Any:
    """Fallback for values ``json`` cannot encode (UUIDs, enums, sets, dates)."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(str(v) for v in obj)
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # GrantsKernelError subclasses keep their identifiers as attributes
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON line per record: envelope, context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_context.get())

        extras = {
            key: value for key, value in vars(record).items()
            if key not in _STDLIB_KEYS and key not in payload
        }
        payload.update(extras)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


# ---------------------------------------------------------------------------
# Logger factory and initialization
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "grants_kernel"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger named ``grants_kernel.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``grants_kernel`` logger.

    Only the first call has an effect.  ``level`` may be a name such as
    ``"debug"`` (as read from the YAML config) or a ``logging`` constant.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Reset logging configuration. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
