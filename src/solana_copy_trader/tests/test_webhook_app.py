from __future__ import annotations

import asyncio
import threading
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from solana_copy_trader.config.settings import (
    AppConfig,
    AppMode,
    ModeConfig,
    ServerConfig,
    WalletConfig,
)
from solana_copy_trader.ingestion.normalizer import normalize_payload
from solana_copy_trader.monitoring.metrics import METRICS
from solana_copy_trader.server.app import create_app


class FakeOrchestrator:
    def __init__(self) -> None:
        self.batches = []
        self.done = threading.Event()

    def normalize(self, payload):
        return normalize_payload(payload)

    def handle_events(self, events):
        self.batches.append([event.signature for event in events])
        self.done.set()
        return []


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("APP_CONFIG_FILE", str(tmp_path / "missing.toml"))
    monkeypatch.chdir(tmp_path)


def _app(orchestrator: FakeOrchestrator):
    config = AppConfig(
        mode=ModeConfig(active=AppMode.DRY_RUN),
        wallet=WalletConfig(tracked_wallet_address="Tracked"),
        server=ServerConfig(webhook_path="/webhook"),
    )
    return create_app(orchestrator, config)


def test_webhook_accepts_batches_and_rejects_empty_bodies() -> None:
    METRICS.reset()
    orchestrator = FakeOrchestrator()
    app = _app(orchestrator)

    async def _exercise() -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            ok = await client.post(
                "/webhook", json=[{"signature": "sig-1", "type": "SWAP"}, {"signature": "sig-2"}]
            )
            assert ok.status_code == 200
            body = ok.json()
            assert body["received"] is True
            assert body["events"] == 2
            assert "timestamp" in body

            for bad in ({}, [], None):
                resp = await client.post("/webhook", json=bad)
                assert resp.status_code == 400
                assert "error" in resp.json()

            garbage = await client.post(
                "/webhook", content=b"{not json", headers={"content-type": "application/json"}
            )
            assert garbage.status_code == 400

    asyncio.run(_exercise())

    assert orchestrator.done.wait(timeout=5)
    assert orchestrator.batches == [["sig-1", "sig-2"]]
    assert METRICS.get("webhook_rejected") == 4


def test_health_and_metrics_endpoints() -> None:
    METRICS.reset()
    METRICS.increment("safety_denied.COOLDOWN", 2)
    app = _app(FakeOrchestrator())

    async def _exercise() -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            health = await client.get("/health")
            assert health.status_code == 200
            assert health.json() == {"status": "ok", "mode": "dry_run"}
            metrics = await client.get("/metrics")
            assert metrics.status_code == 200
            assert "safety_denied_COOLDOWN 2.0" in metrics.text

    asyncio.run(_exercise())


def test_webhook_keeps_valid_siblings_of_non_finite_amounts() -> None:
    orchestrator = FakeOrchestrator()
    app = _app(orchestrator)
    body = b'[{"signature": "bad", "nativeTransfers": [{"amount": Infinity}]}, {"signature": "good"}]'

    async def _exercise() -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            resp = await client.post(
                "/webhook", content=body, headers={"content-type": "application/json"}
            )
            assert resp.status_code == 200
            assert resp.json()["events"] == 1

    asyncio.run(_exercise())

    assert orchestrator.done.wait(timeout=5)
    assert orchestrator.batches == [["good"]]
