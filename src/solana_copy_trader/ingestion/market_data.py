"""Liquidity and price-impact lookups used by the safety gate."""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

import requests
from cachetools import TTLCache

from ..config.settings import ExecutionConfig, MarketDataConfig, get_app_config
from ..domain.errors import MarketDataUnavailable
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import SOL_MINT, sol_to_lamports


class MarketDataProvider(Protocol):
    """Market-data collaborator consulted before a trade is allowed."""

    def get_liquidity(self, mint: str) -> float:
        """Return the pooled liquidity for ``mint`` in USD."""

    def estimate_price_impact(self, mint: str, trade_size_sol: float) -> float:
        """Return the expected price impact of buying ``mint`` as a fraction."""


class JupiterMarketData:
    """DexScreener liquidity and Jupiter quote price impact over HTTP."""

    def __init__(
        self,
        config: Optional[MarketDataConfig] = None,
        execution: Optional[ExecutionConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        app_config = get_app_config() if config is None or execution is None else None
        self._config = config or app_config.market_data
        self._execution = execution or app_config.execution
        self._session = session or requests.Session()
        self._liquidity_cache: TTLCache[str, float] = TTLCache(
            maxsize=512, ttl=max(self._config.cache_ttl_seconds, 1)
        )
        self._logger = get_logger(__name__)

    def get_liquidity(self, mint: str) -> float:
        cached = self._liquidity_cache.get(mint)
        if cached is not None:
            return cached
        url = f"{str(self._config.dexscreener_url).rstrip('/')}/{mint}"
        payload = self._get_json(url, None, source="dexscreener")
        pairs = payload.get("pairs") if isinstance(payload, dict) else None
        if not pairs:
            # No listed pair means nothing to trade against.
            liquidity = 0.0
        else:
            values = []
            for pair in pairs:
                liquidity_info = pair.get("liquidity") if isinstance(pair, dict) else None
                if isinstance(liquidity_info, dict):
                    try:
                        values.append(float(liquidity_info.get("usd") or 0.0))
                    except (TypeError, ValueError):
                        continue
            liquidity = max(values, default=0.0)
        self._liquidity_cache[mint] = liquidity
        METRICS.gauge("market_data.last_liquidity_usd", liquidity)
        return liquidity

    def estimate_price_impact(self, mint: str, trade_size_sol: float) -> float:
        params = {
            "inputMint": SOL_MINT,
            "outputMint": mint,
            "amount": str(sol_to_lamports(trade_size_sol)),
            "slippageBps": str(self._execution.slippage_bps),
        }
        payload = self._get_json(str(self._config.jupiter_quote_url), params, source="jupiter")
        if not isinstance(payload, dict) or "priceImpactPct" not in payload:
            raise MarketDataUnavailable(f"Quote for {mint} has no price impact")
        try:
            impact = abs(float(payload["priceImpactPct"]))
        except (TypeError, ValueError) as exc:
            raise MarketDataUnavailable(f"Unparseable price impact for {mint}") from exc
        METRICS.observe("market_data.price_impact", impact)
        return impact

    def _get_json(self, url: str, params: Optional[Dict[str, str]], *, source: str) -> Any:
        try:
            with METRICS.timer(f"market_data.{source}"):
                response = self._session.get(url, params=params, timeout=self._config.http_timeout)
                response.raise_for_status()
                return response.json()
        except (requests.RequestException, ValueError) as exc:
            METRICS.increment(f"market_data.{source}.errors", 1)
            self._logger.warning("Market data request to %s failed: %s", source, exc)
            raise MarketDataUnavailable(f"{source} request failed: {exc}") from exc


__all__ = ["JupiterMarketData", "MarketDataProvider"]
