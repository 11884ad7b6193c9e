"""Build, sign, submit and confirm mirrored swap transactions."""

from __future__ import annotations

import threading
import time
from decimal import ROUND_CEILING, Decimal
from enum import Enum
from typing import Callable, Optional, Set, Tuple

from solders.pubkey import Pubkey
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config.settings import ExecutionConfig, get_app_config
from ..domain.errors import (
    BroadcastRejected,
    ChainClientError,
    InsufficientFunds,
    SwapBuildError,
    TransientRpcError,
)
from ..domain.schemas import (
    BlockhashInfo,
    ConfirmationStatus,
    ExecutionError,
    ExecutionResult,
    ExecutionStatus,
    TradeSignal,
)
from ..monitoring.event_bus import EVENT_BUS, EventSeverity, EventType
from ..monitoring.logger import current_correlation_id, get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import sol_to_lamports
from .solana_client import ChainClient
from .swap_builder import SwapBuilder


class ExecutionState(str, Enum):
    BUILDING = "BUILDING"
    SIGNED = "SIGNED"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class TransactionExecutor:
    """Drives one trade signal through BUILDING, SIGNED, SUBMITTED and a terminal state.

    Only one execution per source signature may be in flight. A failed
    execution is terminal; re-attempting it is left to the caller, which must
    go back through the safety gate.
    """

    def __init__(
        self,
        chain_client: ChainClient,
        swap_builder: SwapBuilder,
        owner: Pubkey,
        config: Optional[ExecutionConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config or get_app_config().execution
        self._chain = chain_client
        self._builder = swap_builder
        self._owner = owner
        self._clock = clock
        self._sleep = sleep
        self._in_flight: Set[str] = set()
        self._lock = threading.Lock()
        self._blockhash_lock = threading.Lock()
        self._cached_blockhash: Optional[Tuple[BlockhashInfo, float]] = None
        self._logger = get_logger(__name__)

    def execute(self, signal: TradeSignal, amount_sol: float) -> ExecutionResult:
        key = signal.source_signature
        with self._lock:
            if key in self._in_flight:
                self._logger.warning("Execution for %s already in flight", key)
                return self._fail(signal, ExecutionError.DUPLICATE_SIGNAL, detail="already in flight")
            self._in_flight.add(key)
        try:
            with METRICS.timer("executor.execute"):
                return self._run(signal, amount_sol)
        finally:
            with self._lock:
                self._in_flight.discard(key)

    def _run(self, signal: TradeSignal, amount_sol: float) -> ExecutionResult:
        mint = signal.mint or ""
        self._transition(signal, ExecutionState.BUILDING)
        try:
            instructions = self._builder.fetch_instructions(
                mint,
                sol_to_lamports(amount_sol),
                self._owner,
                min_out_amount=self._min_out_amount(signal, amount_sol),
            )
            blockhash_info = self._blockhash()
            message = self._builder.assemble(instructions, self._owner, blockhash_info)
        except (SwapBuildError, ChainClientError) as exc:
            return self._fail(signal, ExecutionError.BUILD_FAILED, detail=str(exc))

        try:
            signed = self._chain.sign(message, blockhash_info)
        except ChainClientError as exc:
            return self._fail(signal, ExecutionError.BUILD_FAILED, detail=str(exc))
        self._transition(signal, ExecutionState.SIGNED)

        attempts = 0

        def _submit() -> str:
            nonlocal attempts
            attempts += 1
            return self._chain.submit(signed)

        retrying = Retrying(
            stop=stop_after_attempt(self._config.max_submission_retries),
            wait=wait_exponential(
                multiplier=self._config.retry_backoff_seconds,
                max=self._config.max_backoff_seconds,
            ),
            retry=retry_if_exception_type(TransientRpcError),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            signature = retrying(_submit)
        except InsufficientFunds as exc:
            return self._fail(signal, ExecutionError.INSUFFICIENT_FUNDS, attempts=attempts, detail=str(exc))
        except (BroadcastRejected, TransientRpcError) as exc:
            return self._fail(signal, ExecutionError.BROADCAST_REJECTED, attempts=attempts, detail=str(exc))

        self._transition(signal, ExecutionState.SUBMITTED, signature=signature)
        EVENT_BUS.publish(
            EventType.SUBMITTED,
            {"mint": mint, "signature": signature, "amount_sol": amount_sol, "attempts": attempts},
            correlation_id=current_correlation_id(),
        )
        return self._await_confirmation(signal, signature, blockhash_info, attempts)

    def _await_confirmation(
        self,
        signal: TradeSignal,
        signature: str,
        blockhash_info: BlockhashInfo,
        attempts: int,
    ) -> ExecutionResult:
        deadline = self._clock() + self._config.confirmation_timeout_seconds
        while True:
            try:
                status = self._chain.confirm(signature, blockhash_info)
            except ChainClientError as exc:
                self._logger.warning("Confirmation check for %s failed: %s", signature, exc)
                status = ConfirmationStatus.PENDING
            if status == ConfirmationStatus.CONFIRMED:
                self._transition(signal, ExecutionState.CONFIRMED, signature=signature)
                METRICS.increment("executor.confirmed", 1)
                EVENT_BUS.publish(
                    EventType.CONFIRMED,
                    {"mint": signal.mint, "signature": signature},
                    correlation_id=current_correlation_id(),
                )
                return ExecutionResult(
                    status=ExecutionStatus.CONFIRMED, signature=signature, attempts=attempts
                )
            if status == ConfirmationStatus.EXPIRED:
                return self._fail(
                    signal,
                    ExecutionError.EXPIRED,
                    signature=signature,
                    attempts=attempts,
                    detail=f"block height passed {blockhash_info.last_valid_block_height}",
                )
            if status == ConfirmationStatus.REJECTED:
                return self._fail(
                    signal,
                    ExecutionError.BROADCAST_REJECTED,
                    signature=signature,
                    attempts=attempts,
                    detail="transaction failed on chain",
                )
            if self._clock() >= deadline:
                return self._fail(
                    signal,
                    ExecutionError.TIMEOUT,
                    signature=signature,
                    attempts=attempts,
                    detail=f"not confirmed within {self._config.confirmation_timeout_seconds}s",
                )
            self._sleep(self._config.confirmation_poll_seconds)

    def _min_out_amount(self, signal: TradeSignal, amount_sol: float) -> Optional[int]:
        """Fewest base units of the token we accept, scaled from the tracked wallet's fill.

        Returns ``None`` when the guard is disabled or the signal carries no fill.
        """

        factor = self._config.price_guard_factor
        if (
            factor <= 0
            or not signal.mint
            or not signal.token_amount
            or signal.native_amount_lamports <= 0
        ):
            return None
        decimals = self._chain.get_token_decimals(signal.mint)
        tokens_per_lamport = signal.token_amount / Decimal(signal.native_amount_lamports)
        floor = (
            tokens_per_lamport
            * Decimal(sol_to_lamports(amount_sol))
            * Decimal(str(factor))
            * (Decimal(10) ** decimals)
        )
        return int(floor.to_integral_value(rounding=ROUND_CEILING))

    def _blockhash(self) -> BlockhashInfo:
        with self._blockhash_lock:
            now = self._clock()
            if self._cached_blockhash is not None:
                info, fetched_at = self._cached_blockhash
                if now - fetched_at < self._config.blockhash_max_age_seconds:
                    return info
            info = self._chain.get_latest_blockhash_info()
            self._cached_blockhash = (info, now)
            METRICS.increment("executor.blockhash_refresh", 1)
            return info

    def _transition(
        self, signal: TradeSignal, state: ExecutionState, *, signature: Optional[str] = None
    ) -> None:
        METRICS.increment(f"executor.state.{state.value}", 1)
        self._logger.info(
            "Execution %s -> %s (mint=%s, tx=%s)",
            signal.source_signature,
            state.value,
            signal.mint,
            signature or "-",
        )

    def _fail(
        self,
        signal: TradeSignal,
        error: ExecutionError,
        *,
        signature: Optional[str] = None,
        attempts: int = 0,
        detail: str = "",
    ) -> ExecutionResult:
        self._transition(signal, ExecutionState.FAILED, signature=signature)
        METRICS.increment(f"executor.failed.{error.value}", 1)
        self._logger.error("Execution for %s failed: %s %s", signal.source_signature, error.value, detail)
        EVENT_BUS.publish(
            EventType.FAILED,
            {
                "mint": signal.mint,
                "error": error.value,
                "signature": signature,
                "attempts": attempts,
                "detail": detail,
            },
            severity=EventSeverity.ERROR,
            correlation_id=current_correlation_id(),
        )
        return ExecutionResult.failed(error, signature=signature, attempts=attempts, detail=detail)


__all__ = ["ExecutionState", "TransactionExecutor"]
