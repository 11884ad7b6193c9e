"""Jupiter swap-instruction builder for mirrored buys."""

from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

import requests
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey

from ..config.settings import ExecutionConfig, MarketDataConfig, get_app_config
from ..domain.errors import SwapBuildError
from ..domain.schemas import BlockhashInfo
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import SOL_MINT


class SwapBuilder(Protocol):
    def fetch_instructions(
        self,
        mint: str,
        amount_lamports: int,
        owner: Pubkey,
        *,
        min_out_amount: Optional[int] = None,
    ) -> List[Instruction]:
        ...

    def assemble(
        self, instructions: Sequence[Instruction], payer: Pubkey, blockhash_info: BlockhashInfo
    ) -> Message:
        ...


class JupiterSwapBuilder:
    """Builds a legacy SOL -> token swap message from the Jupiter v6 API."""

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
        self._logger = get_logger(__name__)

    def fetch_instructions(
        self,
        mint: str,
        amount_lamports: int,
        owner: Pubkey,
        *,
        min_out_amount: Optional[int] = None,
    ) -> List[Instruction]:
        """Quote ``amount_lamports`` of SOL into ``mint`` and fetch the swap instructions.

        ``min_out_amount`` is a floor in the token's base units; a quote below it
        raises :class:`SwapBuildError` before any swap instructions are requested.
        """

        if amount_lamports <= 0:
            raise SwapBuildError("Swap amount must be positive")
        quote = self._request(
            "get",
            str(self._config.jupiter_quote_url),
            params={
                "inputMint": SOL_MINT,
                "outputMint": mint,
                "amount": str(amount_lamports),
                "slippageBps": str(self._execution.slippage_bps),
                "asLegacyTransaction": "true",
            },
        )
        if not isinstance(quote, dict) or "outAmount" not in quote:
            raise SwapBuildError(f"No route found for {mint}")
        self._logger.debug(
            "Jupiter quote for %s: in=%s out=%s impact=%s",
            mint,
            quote.get("inAmount"),
            quote.get("outAmount"),
            quote.get("priceImpactPct"),
        )
        if min_out_amount is not None:
            try:
                out_amount = int(quote["outAmount"])
            except (TypeError, ValueError) as exc:
                raise SwapBuildError(f"Unreadable quote outAmount for {mint}") from exc
            if out_amount < min_out_amount:
                METRICS.increment("jupiter.price_guard_rejected", 1)
                raise SwapBuildError(
                    f"Price guard: quote gives {out_amount} base units of {mint}, "
                    f"minimum is {min_out_amount}"
                )
        body: Dict[str, Any] = {
            "quoteResponse": quote,
            "userPublicKey": str(owner),
            "wrapAndUnwrapSol": True,
            "asLegacyTransaction": True,
        }
        if self._execution.priority_fee_lamports > 0:
            body["dynamicComputeUnitLimit"] = True
            body["prioritizationFeeLamports"] = {
                "priorityLevelWithMaxLamports": {
                    "priorityLevel": self._execution.priority_level,
                    "maxLamports": self._execution.priority_fee_lamports,
                    "global": False,
                }
            }
        response = self._request(
            "post", str(self._config.jupiter_swap_instructions_url), json=body
        )
        if not isinstance(response, dict) or "error" in response:
            detail = response.get("error") if isinstance(response, dict) else response
            raise SwapBuildError(f"Swap instructions unavailable: {detail}")

        entries: List[Dict[str, Any]] = []
        entries.extend(response.get("computeBudgetInstructions") or [])
        entries.extend(response.get("setupInstructions") or [])
        swap_instruction = response.get("swapInstruction")
        if not swap_instruction:
            raise SwapBuildError("Swap instructions response has no swap instruction")
        entries.append(swap_instruction)
        if response.get("cleanupInstruction"):
            entries.append(response["cleanupInstruction"])
        return self._convert_instructions(entries)

    def assemble(
        self, instructions: Sequence[Instruction], payer: Pubkey, blockhash_info: BlockhashInfo
    ) -> Message:
        return Message.new_with_blockhash(
            list(instructions), payer, Hash.from_string(blockhash_info.blockhash)
        )

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            with METRICS.timer("jupiter.swap"):
                response = self._session.request(
                    method, url, timeout=self._config.http_timeout, **kwargs
                )
                response.raise_for_status()
                return response.json()
        except (requests.RequestException, ValueError) as exc:
            METRICS.increment("jupiter.swap.errors", 1)
            raise SwapBuildError(f"Jupiter request failed: {exc}") from exc

    def _convert_instructions(self, entries: Iterable[Dict[str, Any]]) -> List[Instruction]:
        instructions: List[Instruction] = []
        try:
            for entry in entries:
                program_id = Pubkey.from_string(entry["programId"])
                accounts = [
                    AccountMeta(
                        pubkey=Pubkey.from_string(meta["pubkey"]),
                        is_signer=bool(meta["isSigner"]),
                        is_writable=bool(meta["isWritable"]),
                    )
                    for meta in entry.get("accounts", [])
                ]
                data = base64.b64decode(entry.get("data", ""))
                instructions.append(Instruction(program_id=program_id, data=data, accounts=accounts))
        except (KeyError, TypeError, ValueError, binascii.Error) as exc:
            raise SwapBuildError(f"Malformed instruction in Jupiter response: {exc}") from exc
        return instructions


__all__ = ["JupiterSwapBuilder", "SwapBuilder"]
