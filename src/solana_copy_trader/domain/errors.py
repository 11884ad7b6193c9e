"""Exception taxonomy for the copy-trading pipeline.

Expected outcomes such as a safety denial or a failed broadcast are reported
as values (:class:`TradeDecision`, :class:`ExecutionResult`). The exceptions
below are raised at collaborator boundaries and translated into those values
by the component that owns the decision.
"""

from __future__ import annotations


class CopyTraderError(Exception):
    """Base class for all pipeline errors."""


class InvalidPayload(CopyTraderError):
    """Inbound notification is absent, empty, or not an object/array."""


class MarketDataUnavailable(CopyTraderError):
    """Liquidity or price-impact data could not be obtained."""


class InsufficientBalance(CopyTraderError):
    """Operator balance leaves no viable trade size above the reserve."""

    def __init__(self, available: float, reserve: float, size: float) -> None:
        super().__init__(
            f"Insufficient balance: available={available:.9f} reserve={reserve:.9f} size={size:.9f}"
        )
        self.available = available
        self.reserve = reserve
        self.size = size


class SwapBuildError(CopyTraderError):
    """Swap route or instructions could not be assembled."""


class ChainClientError(CopyTraderError):
    """Base class for errors raised by the chain client."""


class TransientRpcError(ChainClientError):
    """Network or node failure that may succeed on retry."""


class InsufficientFunds(ChainClientError):
    """The cluster rejected the transaction for lack of funds."""


class BroadcastRejected(ChainClientError):
    """Deterministic rejection of a transaction by the cluster."""


__all__ = [
    "BroadcastRejected",
    "ChainClientError",
    "CopyTraderError",
    "InsufficientBalance",
    "InsufficientFunds",
    "InvalidPayload",
    "MarketDataUnavailable",
    "SwapBuildError",
    "TransientRpcError",
]
