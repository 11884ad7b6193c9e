"""FastAPI application receiving enhanced-transaction webhooks."""

from __future__ import annotations

import json
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from ..config.settings import AppConfig, get_app_config
from ..domain.errors import InvalidPayload
from ..monitoring.event_bus import EVENT_BUS, EventType
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..orchestration.pipeline import CopyTradeOrchestrator
from ..utils.constants import utc_now

_LOGGER = get_logger(__name__)


def create_app(
    orchestrator: CopyTradeOrchestrator, config: Optional[AppConfig] = None
) -> FastAPI:
    app_config = config or get_app_config()
    app = FastAPI(title="Solana Copy Trader", version="0.1.0")

    @app.post(app_config.server.webhook_path)
    async def webhook(request: Request, background: BackgroundTasks) -> JSONResponse:
        METRICS.increment("webhook_requests", 1)
        body = await request.body()
        try:
            payload = json.loads(body) if body else None
            events = orchestrator.normalize(payload)
        except (ValueError, InvalidPayload) as exc:
            # json.JSONDecodeError is a ValueError
            METRICS.increment("webhook_rejected", 1)
            _LOGGER.warning("Rejected webhook body: %s", exc)
            return JSONResponse({"error": str(exc) or "Invalid payload"}, status_code=400)
        background.add_task(orchestrator.handle_events, events)
        return JSONResponse(
            {"received": True, "events": len(events), "timestamp": utc_now().isoformat()}
        )

    @app.get("/health")
    async def health() -> JSONResponse:
        EVENT_BUS.publish(EventType.HEALTH, {"mode": app_config.mode.active.value})
        return JSONResponse({"status": "ok", "mode": app_config.mode.active.value})

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics() -> PlainTextResponse:
        return PlainTextResponse(METRICS.export_prometheus())

    return app


__all__ = ["create_app"]
