"""Position sizing for mirrored trades."""

from __future__ import annotations

from typing import Optional

from ..config.settings import TradingConfig, get_app_config
from ..domain.errors import InsufficientBalance


class TradeSizer:
    """Caps each mirrored trade by the configured maximum and a balance reserve."""

    def __init__(self, config: Optional[TradingConfig] = None) -> None:
        self._config = config or get_app_config().trading

    def size(
        self,
        available_balance: float,
        max_per_trade: Optional[float] = None,
        min_reserve: Optional[float] = None,
    ) -> float:
        cap = self._config.max_sol_per_trade if max_per_trade is None else max_per_trade
        reserve = self._config.min_sol_balance if min_reserve is None else min_reserve
        amount = max(min(available_balance - reserve, cap), 0.0)
        if amount <= 0:
            raise InsufficientBalance(available_balance, reserve, amount)
        return amount


__all__ = ["TradeSizer"]
