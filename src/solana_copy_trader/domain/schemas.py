"""Data models shared by ingestion, strategy, and execution layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple


@dataclass(frozen=True, slots=True)
class NativeTransfer:
    """Movement of lamports between two accounts."""

    from_address: str
    to_address: str
    amount_lamports: int


@dataclass(frozen=True, slots=True)
class TokenTransfer:
    """Movement of an SPL token between two owner accounts."""

    mint: str
    from_address: str
    to_address: str
    amount: Decimal


@dataclass(frozen=True, slots=True)
class TransactionEvent:
    """Normalized on-chain transaction notification."""

    signature: str
    slot: int
    type: str
    fee_payer: str
    native_transfers: Tuple[NativeTransfer, ...] = ()
    token_transfers: Tuple[TokenTransfer, ...] = ()
    source: str = ""
    timestamp: Optional[int] = None


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    IGNORE = "IGNORE"


@dataclass(frozen=True, slots=True)
class TradeSignal:
    """Direction of a tracked-wallet trade derived from a single event."""

    side: TradeSide
    mint: Optional[str]
    source_signature: str
    token_amount: Optional[Decimal] = None
    native_amount_lamports: int = 0

    @classmethod
    def ignore(cls, source_signature: str) -> "TradeSignal":
        return cls(side=TradeSide.IGNORE, mint=None, source_signature=source_signature)


@dataclass(slots=True)
class SafetyState:
    """Rate-limit counters owned by the safety gate."""

    last_trade_timestamp: Optional[float] = None
    trades_in_current_hour_window: int = 0
    hour_window_start: Optional[float] = None
    cumulative_traded_value_today: float = 0.0
    day_window_start: Optional[float] = None


class DenyReason(str, Enum):
    OK = "OK"
    COOLDOWN = "COOLDOWN"
    HOURLY_LIMIT = "HOURLY_LIMIT"
    DAILY_LIMIT = "DAILY_LIMIT"
    BLACKLISTED = "BLACKLISTED"
    LOW_LIQUIDITY = "LOW_LIQUIDITY"
    HIGH_PRICE_IMPACT = "HIGH_PRICE_IMPACT"
    MARKET_DATA_UNAVAILABLE = "MARKET_DATA_UNAVAILABLE"


@dataclass(frozen=True, slots=True)
class TradeDecision:
    allowed: bool
    reason: DenyReason
    detail: str = ""

    @classmethod
    def allow(cls) -> "TradeDecision":
        return cls(allowed=True, reason=DenyReason.OK)

    @classmethod
    def deny(cls, reason: DenyReason, detail: str = "") -> "TradeDecision":
        return cls(allowed=False, reason=reason, detail=detail)


class ExecutionStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class ExecutionError(str, Enum):
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    EXPIRED = "EXPIRED"
    BROADCAST_REJECTED = "BROADCAST_REJECTED"
    TIMEOUT = "TIMEOUT"
    BUILD_FAILED = "BUILD_FAILED"
    DUPLICATE_SIGNAL = "DUPLICATE_SIGNAL"


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Terminal (or last observed) outcome of one mirrored trade attempt."""

    status: ExecutionStatus
    signature: Optional[str] = None
    error: Optional[ExecutionError] = None
    attempts: int = 0
    detail: str = ""

    @classmethod
    def failed(
        cls,
        error: ExecutionError,
        *,
        signature: Optional[str] = None,
        attempts: int = 0,
        detail: str = "",
    ) -> "ExecutionResult":
        return cls(
            status=ExecutionStatus.FAILED,
            signature=signature,
            error=error,
            attempts=attempts,
            detail=detail,
        )


@dataclass(frozen=True, slots=True)
class BlockhashInfo:
    blockhash: str
    last_valid_block_height: int
    fetched_at: float


class ConfirmationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    EXPIRED = "EXPIRED"
    REJECTED = "REJECTED"


@dataclass(slots=True)
class EventOutcome:
    """Per-event report produced by the orchestrator."""

    signature: str
    signal: Optional[TradeSignal] = None
    decision: Optional[TradeDecision] = None
    result: Optional[ExecutionResult] = None
    amount_sol: Optional[float] = None
    error: Optional[str] = None
    notes: list[str] = field(default_factory=list)


__all__ = [
    "BlockhashInfo",
    "ConfirmationStatus",
    "DenyReason",
    "EventOutcome",
    "ExecutionError",
    "ExecutionResult",
    "ExecutionStatus",
    "NativeTransfer",
    "SafetyState",
    "TokenTransfer",
    "TradeDecision",
    "TradeSide",
    "TradeSignal",
    "TransactionEvent",
]
