"""Rate limits and market filters applied before a mirrored buy."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Tuple

from ..config.settings import SafetyConfig, get_app_config
from ..domain.errors import MarketDataUnavailable
from ..domain.schemas import DenyReason, SafetyState, TradeDecision, TradeSignal
from ..ingestion.market_data import MarketDataProvider
from ..monitoring.event_bus import EVENT_BUS, EventSeverity, EventType
from ..monitoring.logger import current_correlation_id, get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import SECONDS_PER_DAY, SECONDS_PER_HOUR


def roll_window(
    window_start: Optional[float], now: float, duration: float
) -> Tuple[float, bool]:
    """Return the start of the window containing ``now`` and whether it moved.

    Windows are aligned to ``window_start``: once ``now`` reaches
    ``window_start + duration`` the start advances by whole multiples of
    ``duration``, so a long idle period never leaves a partial window behind.
    A missing start opens a new window at ``now``.
    """

    if duration <= 0:
        raise ValueError("duration must be positive")
    if window_start is None:
        return now, True
    if now < window_start + duration:
        return window_start, False
    elapsed = math.floor((now - window_start) / duration)
    return window_start + elapsed * duration, True


@dataclass(slots=True)
class _MarketView:
    liquidity: Optional[float] = None
    price_impact: Optional[float] = None
    error: Optional[str] = None


class SafetyGate:
    """Serializes decide-and-commit over the cooldown, hourly and daily limits.

    Checks run in a fixed order and the first failure wins: cooldown, hourly
    cap, daily cap, blacklist, liquidity, price impact. Market data is fetched
    without holding the state lock; the state checks are repeated under the
    lock immediately before an allowed trade is committed.
    """

    def __init__(
        self,
        market_data: MarketDataProvider,
        config: Optional[SafetyConfig] = None,
        *,
        state: Optional[SafetyState] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or get_app_config().safety
        self._market_data = market_data
        self._state = state or SafetyState()
        self._clock = clock
        self._lock = threading.Lock()
        self._logger = get_logger(__name__)

    @property
    def state(self) -> SafetyState:
        with self._lock:
            return replace(self._state)

    def evaluate(self, signal: TradeSignal, mint: Optional[str], trade_value: float) -> TradeDecision:
        """Decide whether ``signal`` may trade ``trade_value`` SOL of ``mint``.

        An allowed decision has already been committed to the safety state when
        this method returns.
        """

        candidate = mint or signal.mint or ""
        with self._lock:
            denied = self._check_state(self._clock(), candidate, trade_value)
        if denied is not None:
            return self._deny(signal, candidate, denied)

        view = self._fetch_market(candidate, trade_value)

        with self._lock:
            now = self._clock()
            denied = self._check_state(now, candidate, trade_value) or self._check_market(view)
            if denied is None:
                self._commit(now, trade_value)
                snapshot = replace(self._state)
        if denied is not None:
            return self._deny(signal, candidate, denied)

        METRICS.increment("safety_allowed", 1)
        METRICS.gauge("safety.trades_in_hour", snapshot.trades_in_current_hour_window)
        METRICS.gauge("safety.traded_value_today", snapshot.cumulative_traded_value_today)
        self._logger.info(
            "Trade allowed for %s (%.4f SOL; %s trades this hour, %.4f SOL today)",
            candidate,
            trade_value,
            snapshot.trades_in_current_hour_window,
            snapshot.cumulative_traded_value_today,
        )
        return TradeDecision.allow()

    def _check_state(
        self, now: float, mint: str, trade_value: float
    ) -> Optional[Tuple[DenyReason, str]]:
        state = self._state
        cfg = self._config
        if state.last_trade_timestamp is not None:
            elapsed = now - state.last_trade_timestamp
            if elapsed < cfg.cooldown_seconds:
                return DenyReason.COOLDOWN, f"{cfg.cooldown_seconds - elapsed:.1f}s remaining"

        state.hour_window_start, reset = roll_window(state.hour_window_start, now, SECONDS_PER_HOUR)
        if reset:
            state.trades_in_current_hour_window = 0
        if state.trades_in_current_hour_window >= cfg.max_trades_per_hour:
            return DenyReason.HOURLY_LIMIT, f"{state.trades_in_current_hour_window} trades this hour"

        state.day_window_start, reset = roll_window(state.day_window_start, now, SECONDS_PER_DAY)
        if reset:
            state.cumulative_traded_value_today = 0.0
        if state.cumulative_traded_value_today + trade_value > cfg.max_daily_trade_value:
            return (
                DenyReason.DAILY_LIMIT,
                f"{state.cumulative_traded_value_today:.4f} + {trade_value:.4f} SOL exceeds "
                f"{cfg.max_daily_trade_value:.4f}",
            )

        if mint in cfg.blacklisted_tokens:
            return DenyReason.BLACKLISTED, mint
        return None

    def _fetch_market(self, mint: str, trade_value: float) -> _MarketView:
        view = _MarketView()
        try:
            view.liquidity = self._market_data.get_liquidity(mint)
            if view.liquidity < self._config.min_liquidity_usd:
                return view
            view.price_impact = self._market_data.estimate_price_impact(mint, trade_value)
        except MarketDataUnavailable as exc:
            view.error = str(exc)
        return view

    def _check_market(self, view: _MarketView) -> Optional[Tuple[DenyReason, str]]:
        cfg = self._config
        if view.liquidity is not None and view.liquidity < cfg.min_liquidity_usd:
            return DenyReason.LOW_LIQUIDITY, f"${view.liquidity:,.0f} < ${cfg.min_liquidity_usd:,.0f}"
        if view.error is not None:
            return DenyReason.MARKET_DATA_UNAVAILABLE, view.error
        if view.price_impact is not None and view.price_impact > cfg.max_price_impact:
            return (
                DenyReason.HIGH_PRICE_IMPACT,
                f"{view.price_impact:.2%} > {cfg.max_price_impact:.2%}",
            )
        return None

    def _commit(self, now: float, trade_value: float) -> None:
        self._state.last_trade_timestamp = now
        self._state.trades_in_current_hour_window += 1
        self._state.cumulative_traded_value_today += trade_value

    def _deny(
        self, signal: TradeSignal, mint: str, denied: Tuple[DenyReason, str]
    ) -> TradeDecision:
        reason, detail = denied
        METRICS.increment(f"safety_denied.{reason.value}", 1)
        self._logger.warning("Trade denied for %s: %s (%s)", mint, reason.value, detail)
        EVENT_BUS.publish(
            EventType.REJECT,
            {
                "mint": mint,
                "reason": reason.value,
                "detail": detail,
                "source_signature": signal.source_signature,
            },
            severity=EventSeverity.WARNING,
            correlation_id=current_correlation_id(),
        )
        return TradeDecision.deny(reason, detail)


__all__ = ["SafetyGate", "roll_window"]
