from __future__ import annotations

import io
import json
import logging
from pathlib import Path

import pytest

from solana_copy_trader.config.settings import AppConfig, MonitoringConfig
from solana_copy_trader.monitoring import bootstrap_observability
from solana_copy_trader.monitoring.event_bus import EVENT_BUS, EventSeverity, EventType
from solana_copy_trader.monitoring.logger import (
    StructuredFormatter,
    configure_logging,
    correlation_scope,
    current_correlation_id,
    get_logger,
    log_context,
)
from solana_copy_trader.monitoring.metrics import METRICS, MetricsRegistry


def test_event_bus_fans_out_and_counts() -> None:
    EVENT_BUS.reset()
    METRICS.reset()
    EVENT_BUS.attach_metrics(METRICS)
    received = []
    EVENT_BUS.subscribe(None, received.append)

    EVENT_BUS.publish(
        EventType.REJECT,
        {"reason": "COOLDOWN"},
        severity=EventSeverity.WARNING,
        correlation_id="sig-1",
    )
    EVENT_BUS.publish("failed", {"error": "TIMEOUT"})
    assert EVENT_BUS.flush()

    assert [event.type for event in received] == [EventType.REJECT, EventType.FAILED]
    assert received[0].to_dict()["correlation_id"] == "sig-1"
    assert METRICS.get("events.reject") == 1
    assert METRICS.get("events.reject_reason.COOLDOWN") == 1
    assert METRICS.get("events.failed_error.TIMEOUT") == 1
    assert len(EVENT_BUS.history(limit=10)) == 2
    EVENT_BUS.reset()


def test_metrics_registry_snapshot_and_export() -> None:
    registry = MetricsRegistry(max_hist_samples=4)
    registry.increment("executor.confirmed")
    registry.gauge("wallet.balance_sol", 1.5)
    for value in (1.0, 2.0, 3.0, 4.0, 5.0):
        registry.observe("rpc.latency", value)
    with registry.timer("jupiter.swap"):
        pass

    snap = registry.snapshot()
    assert snap["counters"]["executor.confirmed"] == 1.0
    assert snap["counters"]["jupiter.swap.calls_total"] == 1.0
    assert snap["gauges"]["wallet.balance_sol"] == 1.5
    assert snap["histograms"]["rpc.latency"]["count"] == 4.0
    text = registry.export_prometheus()
    assert "# TYPE executor_confirmed counter" in text
    assert 'rpc_latency{quantile="p50"}' in text


def test_structured_formatter_includes_correlation_and_extras() -> None:
    record = logging.LogRecord("copy", logging.INFO, __file__, 10, "hello %s", ("world",), None)
    record.correlation_id = "sig-9"
    record.mint = "MintX"

    payload = json.loads(StructuredFormatter().format(record))

    assert payload["message"] == "hello world"
    assert payload["correlation_id"] == "sig-9"
    assert payload["extra"] == {"mint": "MintX"}


def test_correlation_scope_restores_previous_value() -> None:
    assert current_correlation_id() == "-"
    with correlation_scope("outer"):
        with correlation_scope("inner"):
            assert current_correlation_id() == "inner"
        assert current_correlation_id() == "outer"
    assert current_correlation_id() == "-"


def test_bootstrap_attaches_metrics(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("APP_CONFIG_FILE", str(tmp_path / "missing.toml"))
    monkeypatch.chdir(tmp_path)
    EVENT_BUS.reset()
    METRICS.reset()
    bootstrap_observability(config=AppConfig(monitoring=MonitoringConfig(log_level="WARNING")))

    EVENT_BUS.publish(EventType.HEALTH, {"status": "ok"})
    EVENT_BUS.flush()

    assert METRICS.get("events.health") == 1
    EVENT_BUS.reset()


def _capture(config: MonitoringConfig):
    stream = io.StringIO()
    handler = configure_logging(config, stream=stream)
    return stream, handler


def test_trade_context_is_attached_to_json_records() -> None:
    stream, handler = _capture(MonitoringConfig(log_level="info"))
    logger = get_logger("solana_copy_trader.tests.context")
    try:
        with correlation_scope("sig-7"):
            with log_context(mint="MintX", source=None):
                logger.info("buying")
            logger.info("done")
    finally:
        logging.getLogger().removeHandler(handler)

    records = [
        json.loads(line)
        for line in stream.getvalue().splitlines()
        if '"solana_copy_trader.tests.context"' in line
    ]
    assert [record["message"] for record in records] == ["buying", "done"]
    assert records[0]["correlation_id"] == "sig-7"
    assert records[0]["mint"] == "MintX"
    assert "source" not in records[0]
    assert "mint" not in records[1]


def test_console_format_and_library_levels() -> None:
    stream, handler = _capture(
        MonitoringConfig(json_logs=False, logger_levels={"httpx": "error"})
    )
    try:
        with correlation_scope("sig-8"), log_context(mint="MintY"):
            get_logger("solana_copy_trader.tests.console").warning("slow quote")
    finally:
        logging.getLogger().removeHandler(handler)

    line = next(
        text for text in stream.getvalue().splitlines() if "solana_copy_trader.tests.console" in text
    )
    assert "[sig-8]" in line
    assert line.endswith("slow quote mint=MintY")
    assert logging.getLogger("httpx").level == logging.ERROR
    assert logging.getLogger().level == logging.INFO


def test_unknown_log_level_is_rejected() -> None:
    with pytest.raises(ValueError):
        MonitoringConfig(log_level="chatty")
