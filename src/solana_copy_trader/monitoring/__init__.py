"""Monitoring package exports and helpers."""

from __future__ import annotations

from typing import Optional

from ..config.settings import AppConfig, get_app_config
from .event_bus import EVENT_BUS
from .logger import configure_logging
from .metrics import METRICS


def bootstrap_observability(*, config: Optional[AppConfig] = None) -> None:
    """Configure logging and route event bus counts into the metrics registry."""

    app_config = config or get_app_config()
    configure_logging(app_config.monitoring)
    EVENT_BUS.attach_metrics(METRICS)


__all__ = ["bootstrap_observability", "EVENT_BUS", "METRICS"]
