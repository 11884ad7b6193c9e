"""Solana RPC client wrapper implementing the chain-client collaborator."""

from __future__ import annotations

import time
from typing import Callable, Dict, List, Optional, Protocol, TypeVar

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..config.settings import ExecutionConfig, RPCConfig, get_app_config
from ..domain.errors import (
    BroadcastRejected,
    ChainClientError,
    InsufficientFunds,
    TransientRpcError,
)
from ..domain.schemas import BlockhashInfo, ConfirmationStatus
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import LAMPORTS_PER_SOL
from .wallet import Wallet

T = TypeVar("T")

_INSUFFICIENT_FUNDS_MARKERS = (
    "insufficient funds",
    "insufficientfundsforfee",
    "insufficient lamports",
    "found no record of a prior credit",
)

# Weakest first. solders statuses are unhashable, so rank by position.
_COMMITMENT_ORDER = (
    TransactionConfirmationStatus.Processed,
    TransactionConfirmationStatus.Confirmed,
    TransactionConfirmationStatus.Finalized,
)
_REQUIRED_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


def _commitment_rank(status: Optional[TransactionConfirmationStatus]) -> int:
    if status is None:
        return -1
    for rank, level in enumerate(_COMMITMENT_ORDER):
        if status == level:
            return rank
    return -1


class ChainClient(Protocol):
    """Chain operations the executor depends on. All calls may block or fail."""

    def get_balance(self, address: str) -> float:
        ...

    def get_latest_blockhash_info(self) -> BlockhashInfo:
        ...

    def sign(self, message: Message, blockhash_info: BlockhashInfo) -> Transaction:
        ...

    def get_token_decimals(self, mint: str) -> int:
        ...

    def submit(self, signed: Transaction) -> str:
        ...

    def confirm(self, signature: str, blockhash_info: BlockhashInfo) -> ConfirmationStatus:
        ...


def _rpc_error_text(exc: RPCException) -> str:
    detail = exc.args[0] if exc.args else exc
    message = getattr(detail, "message", None)
    data = getattr(detail, "data", None)
    parts = [str(message or detail)]
    if data is not None:
        parts.append(str(data))
    return " ".join(parts)


class SolanaClient:
    """``solana-py`` backed client with primary and fallback endpoints."""

    def __init__(
        self,
        wallet: Optional[Wallet],
        config: Optional[RPCConfig] = None,
        execution: Optional[ExecutionConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        app_config = get_app_config() if config is None or execution is None else None
        self._config = config or app_config.rpc
        self._execution = execution or app_config.execution
        self._wallet = wallet
        self._clock = clock
        self._commitment = Commitment(self._config.commitment)
        self._endpoints = [str(self._config.primary_url), *map(str, self._config.fallback_urls)]
        self._clients = [
            Client(endpoint, commitment=self._commitment, timeout=self._config.request_timeout)
            for endpoint in self._endpoints
        ]
        self._decimals: Dict[str, int] = {}
        self._logger = get_logger(__name__)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_fixed(1),
        retry=retry_if_exception_type(TransientRpcError),
        reraise=True,
    )
    def get_balance(self, address: str) -> float:
        pubkey = Pubkey.from_string(address)
        response = self._call("get_balance", lambda client: client.get_balance(pubkey))
        balance = response.value / LAMPORTS_PER_SOL
        METRICS.gauge("wallet.balance_sol", balance)
        return balance

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_fixed(1),
        retry=retry_if_exception_type(TransientRpcError),
        reraise=True,
    )
    def get_latest_blockhash_info(self) -> BlockhashInfo:
        response = self._call("get_latest_blockhash", lambda client: client.get_latest_blockhash())
        return BlockhashInfo(
            blockhash=str(response.value.blockhash),
            last_valid_block_height=int(response.value.last_valid_block_height),
            fetched_at=self._clock(),
        )

    def sign(self, message: Message, blockhash_info: BlockhashInfo) -> Transaction:
        if self._wallet is None:
            raise ChainClientError("No operator keypair loaded; signing is unavailable")
        try:
            return Transaction(
                [self._wallet.keypair], message, Hash.from_string(blockhash_info.blockhash)
            )
        except Exception as exc:  # solders SignerError, bad blockhash string
            raise ChainClientError(f"Signing failed: {exc}") from exc

    def get_token_decimals(self, mint: str) -> int:
        cached = self._decimals.get(mint)
        if cached is not None:
            return cached
        try:
            pubkey = Pubkey.from_string(mint)
        except ValueError as exc:
            raise ChainClientError(f"Invalid mint address {mint}") from exc
        response = self._call("get_token_supply", lambda client: client.get_token_supply(pubkey))
        decimals = int(response.value.decimals)
        self._decimals[mint] = decimals
        return decimals

    def submit(self, signed: Transaction) -> str:
        """Broadcast ``signed`` once per endpoint until one accepts it.

        Raises :class:`InsufficientFunds` or :class:`BroadcastRejected` for
        deterministic rejections and :class:`TransientRpcError` when every
        endpoint failed at the transport level.
        """

        opts = TxOpts(
            skip_preflight=self._execution.skip_preflight,
            preflight_commitment=self._commitment,
        )
        payload = bytes(signed)
        response = self._call(
            "send_raw_transaction",
            lambda client: client.send_raw_transaction(payload, opts=opts),
        )
        signature = str(response.value)
        self._logger.info("Submitted transaction %s", signature)
        return signature

    def confirm(self, signature: str, blockhash_info: BlockhashInfo) -> ConfirmationStatus:
        sig = Signature.from_string(signature)
        response = self._call(
            "get_signature_statuses", lambda client: client.get_signature_statuses([sig])
        )
        status = response.value[0] if response.value else None
        if status is not None:
            if status.err is not None:
                self._logger.warning("Transaction %s failed on chain: %s", signature, status.err)
                return ConfirmationStatus.REJECTED
            required = _REQUIRED_RANK[self._config.commitment]
            if _commitment_rank(status.confirmation_status) >= required:
                return ConfirmationStatus.CONFIRMED
        height = self._call("get_block_height", lambda client: client.get_block_height())
        if int(height.value) > blockhash_info.last_valid_block_height:
            return ConfirmationStatus.EXPIRED
        return ConfirmationStatus.PENDING

    def health_check(self) -> bool:
        for endpoint, client in zip(self._endpoints, self._clients):
            try:
                if client.is_connected():
                    return True
            except (SolanaRpcException, httpx.HTTPError):
                self._logger.debug("Health check failed on %s", endpoint)
        return False

    def _call(self, operation: str, func: Callable[[Client], T]) -> T:
        errors: List[str] = []
        for endpoint, client in zip(self._endpoints, self._clients):
            try:
                with METRICS.timer(f"rpc.{operation}"):
                    return func(client)
            except RPCException as exc:
                text = _rpc_error_text(exc)
                METRICS.increment(f"rpc.{operation}.rejected", 1)
                if any(marker in text.lower() for marker in _INSUFFICIENT_FUNDS_MARKERS):
                    raise InsufficientFunds(text) from exc
                if operation == "send_raw_transaction":
                    raise BroadcastRejected(text) from exc
                raise ChainClientError(f"{operation} rejected: {text}") from exc
            except (SolanaRpcException, httpx.HTTPError) as exc:
                METRICS.increment(f"rpc.{operation}.transient", 1)
                self._logger.warning("%s failed on %s: %s", operation, endpoint, exc)
                errors.append(f"{endpoint}: {exc}")
        raise TransientRpcError(f"{operation} failed on all endpoints: {'; '.join(errors)}")


__all__ = ["ChainClient", "SolanaClient"]
