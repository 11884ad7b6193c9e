"""Internal event bus that surfaces trade decisions and outcomes to observers."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from .metrics import MetricsRegistry


class EventType(str, Enum):
    """Supported event categories emitted by the pipeline."""

    SIGNAL = "signal"
    REJECT = "reject"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    HEALTH = "health"


class EventSeverity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass(slots=True)
class Event:
    """Normalized representation of an observability event."""

    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    severity: EventSeverity = EventSeverity.INFO
    correlation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "correlation_id": self.correlation_id,
        }


Subscriber = Callable[[Event], None]


class EventBus:
    """Threaded event bus that fans out structured events to subscribers."""

    def __init__(self, history_size: int = 500) -> None:
        self._queue: "queue.Queue[Event]" = queue.Queue()
        self._subscribers: Dict[Optional[EventType], List[Subscriber]] = defaultdict(list)
        self._history: Deque[Event] = deque(maxlen=history_size)
        self._lock = threading.RLock()
        self._logger = logging.getLogger(__name__)
        self._metrics: Optional[MetricsRegistry] = None
        self._worker = threading.Thread(target=self._run, name="event-bus", daemon=True)
        self._worker.start()

    def attach_metrics(self, registry: Optional[MetricsRegistry]) -> None:
        self._metrics = registry

    def subscribe(self, event_type: Optional[EventType], handler: Subscriber) -> None:
        """Register a subscriber for a specific event type, or ``None`` for all events."""

        with self._lock:
            self._subscribers[event_type].append(handler)

    def publish(
        self,
        event_type: Union[EventType, str],
        payload: Optional[Dict[str, Any]] = None,
        *,
        severity: EventSeverity = EventSeverity.INFO,
        correlation_id: Optional[str] = None,
    ) -> None:
        if isinstance(event_type, str):
            try:
                event_type = EventType(event_type)
            except ValueError as exc:
                raise ValueError(f"Unsupported event type: {event_type}") from exc
        event = Event(
            type=event_type,
            payload=dict(payload or {}),
            severity=severity,
            correlation_id=correlation_id,
        )
        self._queue.put(event)

    def history(self, limit: int = 100) -> List[Event]:
        with self._lock:
            return list(self._history)[-limit:]

    def flush(self, timeout: float = 1.0) -> bool:
        """Best-effort wait for the queue to drain."""

        deadline = time.time() + timeout
        while time.time() < deadline:
            if self._queue.unfinished_tasks == 0:
                return True
            time.sleep(0.01)
        return self._queue.unfinished_tasks == 0

    def reset(self) -> None:
        """Clear subscribers and history. Intended for tests."""

        self.flush()
        with self._lock:
            self._subscribers.clear()
            self._history.clear()
        self._metrics = None

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                self._dispatch(event)
            except Exception:  # pragma: no cover - dispatch must keep the worker alive
                self._logger.exception("Failed to dispatch event %s", event.type.value)
            finally:
                self._queue.task_done()

    def _dispatch(self, event: Event) -> None:
        with self._lock:
            self._history.append(event)
            handlers = list(self._subscribers.get(event.type, [])) + list(
                self._subscribers.get(None, [])
            )
        self._update_metrics(event)
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # pragma: no cover - subscriber failures never break dispatch
                self._logger.exception(
                    "Event handler %s failed for %s",
                    getattr(handler, "__name__", handler),
                    event.type.value,
                )

    def _update_metrics(self, event: Event) -> None:
        if not self._metrics:
            return
        self._metrics.increment(f"events.{event.type.value}", 1.0)
        if event.type == EventType.REJECT:
            reason = event.payload.get("reason")
            if isinstance(reason, str):
                self._metrics.increment(f"events.reject_reason.{reason}", 1.0)
        if event.type == EventType.FAILED:
            error = event.payload.get("error")
            if isinstance(error, str):
                self._metrics.increment(f"events.failed_error.{error}", 1.0)


EVENT_BUS = EventBus()


__all__ = [
    "EVENT_BUS",
    "EventBus",
    "Event",
    "EventType",
    "EventSeverity",
]
