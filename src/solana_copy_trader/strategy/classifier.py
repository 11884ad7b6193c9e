"""Classification of tracked-wallet transactions into buy and sell signals."""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple

from ..domain.schemas import TradeSide, TradeSignal, TransactionEvent
from ..monitoring.logger import get_logger
from ..utils.constants import LAMPORTS_PER_SOL, SOL_MINT

DEFAULT_SWAP_TYPES: Tuple[str, ...] = ("SWAP", "BUY", "SELL")


class SwapClassifier:
    """Derive a :class:`TradeSignal` from the legs a tracked wallet took part in.

    A buy is a transaction where the wallet receives a token and pays the
    native currency; a sell is the reverse. Wrapped SOL is treated as the
    native currency, never as the traded token. The classifier is pure: the
    same event always produces the same signal.
    """

    def __init__(self, swap_types: Iterable[str] = DEFAULT_SWAP_TYPES) -> None:
        self._swap_types = frozenset(kind.upper() for kind in swap_types)
        self._logger = get_logger(__name__)

    def classify(self, event: TransactionEvent, tracked_wallet: str) -> TradeSignal:
        if event.type.upper() not in self._swap_types or not tracked_wallet:
            return TradeSignal.ignore(event.signature)

        native_out, native_in = self._native_flows(event, tracked_wallet)
        tokens_in: Dict[str, Decimal] = defaultdict(Decimal)
        tokens_out: Dict[str, Decimal] = defaultdict(Decimal)
        for transfer in event.token_transfers:
            if transfer.mint == SOL_MINT or transfer.from_address == transfer.to_address:
                continue
            if transfer.to_address == tracked_wallet:
                tokens_in[transfer.mint] += transfer.amount
            elif transfer.from_address == tracked_wallet:
                tokens_out[transfer.mint] += transfer.amount

        is_buy = bool(tokens_in) and native_out > 0
        is_sell = bool(tokens_out) and native_in > 0
        if is_buy == is_sell:
            if is_buy:
                self._logger.debug("Ambiguous swap %s ignored", event.signature)
            return TradeSignal.ignore(event.signature)

        if is_buy:
            side, legs, counter = TradeSide.BUY, tokens_in, native_out
        else:
            side, legs, counter = TradeSide.SELL, tokens_out, native_in
        mint = self._select_leg(legs)
        if mint is None:
            return TradeSignal.ignore(event.signature)
        return TradeSignal(
            side=side,
            mint=mint,
            source_signature=event.signature,
            token_amount=legs[mint],
            native_amount_lamports=counter,
        )

    @staticmethod
    def _native_flows(event: TransactionEvent, wallet: str) -> Tuple[int, int]:
        """Return lamports paid and received by ``wallet``, WSOL legs included."""

        paid = 0
        received = 0
        for transfer in event.native_transfers:
            if transfer.from_address == transfer.to_address:
                continue
            if transfer.from_address == wallet:
                paid += transfer.amount_lamports
            elif transfer.to_address == wallet:
                received += transfer.amount_lamports
        for transfer in event.token_transfers:
            if transfer.mint != SOL_MINT or transfer.from_address == transfer.to_address:
                continue
            lamports = int(transfer.amount * LAMPORTS_PER_SOL)
            if transfer.from_address == wallet:
                paid += lamports
            elif transfer.to_address == wallet:
                received += lamports
        return paid, received

    @staticmethod
    def _select_leg(legs: Dict[str, Decimal]) -> Optional[str]:
        # Every leg in one direction shares the same native counter-leg, so the
        # largest token amount decides, then mint order.
        if not legs:
            return None
        return min(legs, key=lambda mint: (-legs[mint], mint))


def classify(event: TransactionEvent, tracked_wallet: str) -> TradeSignal:
    """Classify ``event`` with the default swap-like types."""

    return SwapClassifier().classify(event, tracked_wallet)


__all__ = ["DEFAULT_SWAP_TYPES", "SwapClassifier", "classify"]
