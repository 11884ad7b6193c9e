"""Logging setup with per-trade context.

Every event handled by the orchestrator runs inside :func:`correlation_scope`
keyed by its source transaction signature, and :func:`log_context` adds fields
such as the traded mint once they are known. Both are attached to each record
by :class:`_TradeContextFilter`, so plain ``logger.info`` calls come out
tagged without threading the values through every call site.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Mapping, Optional

from ..config.settings import MonitoringConfig, get_app_config

_NO_CORRELATION = "-"
_CORRELATION_ID: ContextVar[str] = ContextVar("correlation_id", default=_NO_CORRELATION)
_TRADE_CONTEXT: ContextVar[Mapping[str, Any]] = ContextVar("trade_context", default={})
_CONFIGURED_HANDLER: Optional[logging.Handler] = None

_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "correlation_id",
    "trade",
    "message",
    "asctime",
}


class _TradeContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _CORRELATION_ID.get()
        record.trade = dict(_TRADE_CONTEXT.get())
        return True


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per line; trade context fields sit at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", _NO_CORRELATION),
        }
        payload.update(getattr(record, "trade", None) or {})
        extras = _record_extras(record)
        if extras:
            payload["extra"] = extras
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """Single-line text for running the listener in a terminal."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s [%(correlation_id)s] %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = _NO_CORRELATION
        line = super().format(record)
        fields = {**(getattr(record, "trade", None) or {}), **_record_extras(record)}
        if fields:
            line += " " + " ".join(f"{key}={value}" for key, value in sorted(fields.items()))
        return line


def configure_logging(config: Optional[MonitoringConfig] = None, *, stream=None) -> logging.Handler:
    """Install a single stdout handler on the root logger.

    Calling again replaces the handler installed by the previous call, so the
    level and format can be changed at runtime. Handlers installed by others
    are left alone.
    """

    global _CONFIGURED_HANDLER
    cfg = config or get_app_config().monitoring
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredFormatter() if cfg.json_logs else ConsoleFormatter())
    handler.addFilter(_TradeContextFilter())

    root = logging.getLogger()
    if _CONFIGURED_HANDLER is not None:
        root.removeHandler(_CONFIGURED_HANDLER)
    root.addHandler(handler)
    root.setLevel(cfg.log_level)
    for name, level in cfg.logger_levels.items():
        logging.getLogger(name).setLevel(level)
    logging.captureWarnings(True)
    _CONFIGURED_HANDLER = handler
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def current_correlation_id() -> str:
    return _CORRELATION_ID.get()


@contextmanager
def correlation_scope(correlation_id: Optional[str]) -> Iterator[None]:
    """Tag records with ``correlation_id`` and start an empty trade context."""

    id_token = _CORRELATION_ID.set(correlation_id or _NO_CORRELATION)
    context_token = _TRADE_CONTEXT.set({})
    try:
        yield
    finally:
        _TRADE_CONTEXT.reset(context_token)
        _CORRELATION_ID.reset(id_token)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    bound = {key: value for key, value in fields.items() if value is not None}
    token = _TRADE_CONTEXT.set({**_TRADE_CONTEXT.get(), **bound})
    try:
        yield
    finally:
        _TRADE_CONTEXT.reset(token)


__all__ = [
    "ConsoleFormatter",
    "StructuredFormatter",
    "configure_logging",
    "correlation_scope",
    "current_correlation_id",
    "get_logger",
    "log_context",
]
