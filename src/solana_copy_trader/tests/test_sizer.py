import pytest

from solana_copy_trader.config.settings import TradingConfig
from solana_copy_trader.domain.errors import InsufficientBalance
from solana_copy_trader.strategy.sizing import TradeSizer


def test_size_caps_at_max_per_trade():
    assert TradeSizer().size(5, 2, 1) == pytest.approx(2)


def test_size_leaves_reserve():
    assert TradeSizer().size(1.5, 2, 1) == pytest.approx(0.5)


def test_size_raises_below_reserve():
    with pytest.raises(InsufficientBalance) as excinfo:
        TradeSizer().size(0.5, 2, 1)
    assert excinfo.value.available == 0.5
    assert excinfo.value.reserve == 1


def test_size_raises_at_exact_reserve():
    with pytest.raises(InsufficientBalance):
        TradeSizer().size(1.0, 2, 1)


def test_size_defaults_come_from_trading_config():
    sizer = TradeSizer(TradingConfig(max_sol_per_trade=0.25, min_sol_balance=0.05))

    assert sizer.size(10.0) == pytest.approx(0.25)
    assert sizer.size(0.15) == pytest.approx(0.1)
