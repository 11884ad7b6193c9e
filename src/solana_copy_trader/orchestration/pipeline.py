"""Per-notification pipeline: normalize, classify, gate, size and execute."""

from __future__ import annotations

import threading
from typing import Any, List, Optional, Sequence

from cachetools import TTLCache

from ..config.settings import AppConfig, get_app_config
from ..domain.errors import InsufficientBalance
from ..domain.schemas import EventOutcome, TradeSide, TradeSignal, TransactionEvent
from ..execution.executor import TransactionExecutor
from ..execution.solana_client import ChainClient
from ..ingestion.normalizer import EventNormalizer, summarize_event
from ..monitoring.event_bus import EVENT_BUS, EventType
from ..monitoring.logger import correlation_scope, get_logger, log_context
from ..monitoring.metrics import METRICS
from ..strategy.classifier import SwapClassifier
from ..strategy.safety import SafetyGate
from ..strategy.sizing import TradeSizer


class CopyTradeOrchestrator:
    """Routes every event of a notification through the copy-trading pipeline.

    Events are processed independently: an exception raised while handling one
    event is recorded on its outcome and does not stop its siblings.
    """

    def __init__(
        self,
        *,
        safety_gate: SafetyGate,
        chain_client: ChainClient,
        executor: Optional[TransactionExecutor],
        config: Optional[AppConfig] = None,
        normalizer: Optional[EventNormalizer] = None,
        classifier: Optional[SwapClassifier] = None,
        sizer: Optional[TradeSizer] = None,
        operator_address: Optional[str] = None,
    ) -> None:
        self._config = config or get_app_config()
        if not self._config.wallet.tracked_wallet_address:
            raise ValueError("wallet.tracked_wallet_address must be configured")
        if not self._config.dry_run and executor is None:
            raise ValueError("Live mode requires a transaction executor")
        self._tracked_wallet = self._config.wallet.tracked_wallet_address
        self._operator_wallet = operator_address or self._config.wallet.operator_wallet_address
        if not self._operator_wallet:
            raise ValueError("Operator wallet address is unknown")
        self._gate = safety_gate
        self._chain = chain_client
        self._executor = executor
        self._normalizer = normalizer or EventNormalizer()
        self._classifier = classifier or SwapClassifier()
        self._sizer = sizer or TradeSizer(self._config.trading)
        ttl = max(self._config.trading.dedupe_ttl_seconds, 1)
        self._seen: TTLCache[str, bool] = TTLCache(maxsize=10_000, ttl=ttl)
        self._seen_lock = threading.Lock()
        self._logger = get_logger(__name__)

    def normalize(self, payload: Any) -> List[TransactionEvent]:
        return self._normalizer.normalize(payload)

    def handle_notification(self, payload: Any) -> List[EventOutcome]:
        """Process a decoded webhook body. Raises ``InvalidPayload`` for unusable bodies."""

        return self.handle_events(self.normalize(payload))

    def handle_events(self, events: Sequence[TransactionEvent]) -> List[EventOutcome]:
        METRICS.increment("notifications_received", 1)
        outcomes: List[EventOutcome] = []
        for event in events:
            with correlation_scope(event.signature):
                outcomes.append(self._handle_event(event))
        return outcomes

    def _handle_event(self, event: TransactionEvent) -> EventOutcome:
        outcome = EventOutcome(signature=event.signature)
        if not self._mark_seen(event.signature):
            METRICS.increment("events_duplicate", 1)
            outcome.notes.append("duplicate delivery")
            self._logger.info("Skipping re-delivered event %s", event.signature)
            return outcome
        try:
            self._process(event, outcome)
        except Exception as exc:
            METRICS.increment("events_failed", 1)
            outcome.error = f"{type(exc).__name__}: {exc}"
            self._logger.exception("Processing failed for %s", event.signature)
        return outcome

    def _process(self, event: TransactionEvent, outcome: EventOutcome) -> None:
        signal = self._classifier.classify(event, self._tracked_wallet)
        outcome.signal = signal
        METRICS.increment(f"signals.{signal.side.value}", 1)
        if signal.side != TradeSide.BUY:
            self._logger.info(
                "No action for %s signal", signal.side.value, extra={"event": summarize_event(event)}
            )
            return
        with log_context(mint=signal.mint, source=event.source or None):
            self._copy_buy(event, signal, outcome)

    def _copy_buy(self, event: TransactionEvent, signal: TradeSignal, outcome: EventOutcome) -> None:
        EVENT_BUS.publish(
            EventType.SIGNAL,
            {
                "side": signal.side.value,
                "mint": signal.mint,
                "source": event.source,
                "token_amount": str(signal.token_amount),
                "native_amount_lamports": signal.native_amount_lamports,
            },
            correlation_id=event.signature,
        )
        self._logger.info(
            "BUY signal for %s (%s lamports via %s)",
            signal.mint,
            signal.native_amount_lamports,
            event.source or "unknown",
        )

        trade_value = self._config.trading.max_sol_per_trade
        decision = self._gate.evaluate(signal, signal.mint, trade_value)
        outcome.decision = decision
        if not decision.allowed:
            return

        try:
            balance = self._chain.get_balance(self._operator_wallet)
            amount = self._sizer.size(
                balance,
                self._config.trading.max_sol_per_trade,
                self._config.trading.min_sol_balance,
            )
        except InsufficientBalance as exc:
            METRICS.increment("sizing_rejected", 1)
            outcome.error = str(exc)
            self._logger.warning("Skipping %s: %s", signal.mint, exc)
            return
        outcome.amount_sol = amount

        if self._config.dry_run:
            METRICS.increment("dry_run_trades", 1)
            outcome.notes.append("dry run")
            self._logger.info("Dry run: would buy %s with %.6f SOL", signal.mint, amount)
            return

        if self._executor is None:
            raise RuntimeError("No executor configured for live trading")
        outcome.result = self._executor.execute(signal, amount)
        self._logger.info(
            "Execution finished for %s: %s", signal.mint, outcome.result.status.value,
            extra={"error": outcome.result.error.value if outcome.result.error else None},
        )

    def _mark_seen(self, signature: str) -> bool:
        with self._seen_lock:
            if signature in self._seen:
                return False
            self._seen[signature] = True
            return True


__all__ = ["CopyTradeOrchestrator"]
