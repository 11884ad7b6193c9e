from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest
from solana.rpc.core import RPCException
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.transaction_status import TransactionConfirmationStatus

from solana_copy_trader.config.settings import ExecutionConfig, RPCConfig
from solana_copy_trader.domain.errors import (
    BroadcastRejected,
    ChainClientError,
    InsufficientFunds,
    TransientRpcError,
)
from solana_copy_trader.domain.schemas import BlockhashInfo, ConfirmationStatus
from solana_copy_trader.execution.solana_client import SolanaClient
from solana_copy_trader.execution.wallet import Wallet


class FakeRpc:
    def __init__(self, *, send_error=None, status=None, block_height=100, balance=0) -> None:
        self.send_error = send_error
        self.status = status
        self.block_height = block_height
        self.balance = balance
        self.sent = []

    def send_raw_transaction(self, payload, opts=None):
        self.sent.append(payload)
        if self.send_error is not None:
            raise self.send_error
        return SimpleNamespace(value="5igSig")

    def get_signature_statuses(self, signatures):
        return SimpleNamespace(value=[self.status])

    def get_block_height(self):
        return SimpleNamespace(value=self.block_height)

    def get_balance(self, pubkey):
        return SimpleNamespace(value=self.balance)


class FakeSigned:
    def __bytes__(self) -> bytes:
        return b"signed-bytes"


BLOCKHASH = BlockhashInfo(blockhash="11111111111111111111111111111111", last_valid_block_height=500, fetched_at=0.0)
SIGNATURE = str(Keypair().sign_message(b"copy"))


def _client(*rpcs: FakeRpc, commitment: str = "confirmed") -> SolanaClient:
    client = SolanaClient(
        None,
        RPCConfig(primary_url="https://rpc.example", commitment=commitment),
        ExecutionConfig(),
    )
    client._clients = list(rpcs)
    client._endpoints = [f"https://rpc{index}.example" for index in range(len(rpcs))]
    return client


def test_submit_returns_signature() -> None:
    rpc = FakeRpc()

    assert _client(rpc).submit(FakeSigned()) == "5igSig"
    assert rpc.sent == [b"signed-bytes"]


def test_submit_translates_rpc_errors() -> None:
    funds = FakeRpc(send_error=RPCException("Transaction simulation failed: insufficient lamports"))
    other = FakeRpc(send_error=RPCException("Transaction simulation failed: custom program error 0x1"))

    with pytest.raises(InsufficientFunds):
        _client(funds).submit(FakeSigned())
    with pytest.raises(BroadcastRejected):
        _client(other).submit(FakeSigned())


def test_submit_falls_back_then_raises_transient() -> None:
    down = FakeRpc(send_error=httpx.ConnectError("refused"))
    up = FakeRpc()

    assert _client(down, up).submit(FakeSigned()) == "5igSig"
    with pytest.raises(TransientRpcError):
        _client(down, FakeRpc(send_error=httpx.ReadTimeout("slow"))).submit(FakeSigned())


def test_confirm_maps_statuses() -> None:
    confirmed = SimpleNamespace(err=None, confirmation_status=TransactionConfirmationStatus.Confirmed)
    processed = SimpleNamespace(err=None, confirmation_status=TransactionConfirmationStatus.Processed)
    failed = SimpleNamespace(err="InstructionError", confirmation_status=TransactionConfirmationStatus.Confirmed)
    unknown = SimpleNamespace(err=None, confirmation_status=None)
    finalized = SimpleNamespace(err=None, confirmation_status=TransactionConfirmationStatus.Finalized)

    assert _client(FakeRpc(status=confirmed)).confirm(SIGNATURE, BLOCKHASH) == ConfirmationStatus.CONFIRMED
    assert _client(FakeRpc(status=processed)).confirm(SIGNATURE, BLOCKHASH) == ConfirmationStatus.PENDING
    assert _client(FakeRpc(status=failed)).confirm(SIGNATURE, BLOCKHASH) == ConfirmationStatus.REJECTED
    assert _client(FakeRpc(status=unknown)).confirm(SIGNATURE, BLOCKHASH) == ConfirmationStatus.PENDING
    assert (
        _client(FakeRpc(status=finalized), commitment="finalized").confirm(SIGNATURE, BLOCKHASH)
        == ConfirmationStatus.CONFIRMED
    )
    assert (
        _client(FakeRpc(status=confirmed), commitment="finalized").confirm(SIGNATURE, BLOCKHASH)
        == ConfirmationStatus.PENDING
    )


def test_confirm_expires_after_last_valid_height() -> None:
    rpc = FakeRpc(status=None, block_height=501)

    assert _client(rpc).confirm(SIGNATURE, BLOCKHASH) == ConfirmationStatus.EXPIRED


def test_get_balance_converts_lamports() -> None:
    rpc = FakeRpc(balance=2_500_000_000)

    assert _client(rpc).get_balance(str(Keypair().pubkey())) == pytest.approx(2.5)


def test_sign_requires_keypair() -> None:
    with pytest.raises(ChainClientError):
        _client(FakeRpc()).sign(object(), BLOCKHASH)


def test_sign_wraps_signer_mismatch() -> None:
    wallet = Wallet(Keypair())
    client = SolanaClient(
        wallet, RPCConfig(primary_url="https://rpc.example"), ExecutionConfig()
    )
    stranger = Keypair().pubkey()
    message = Message.new_with_blockhash(
        [Instruction(stranger, b"", [AccountMeta(stranger, is_signer=True, is_writable=True)])],
        stranger,
        Hash.default(),
    )

    with pytest.raises(ChainClientError):
        client.sign(message, BLOCKHASH)


def test_token_decimals_are_cached() -> None:
    class SupplyRpc(FakeRpc):
        def __init__(self) -> None:
            super().__init__()
            self.lookups = 0

        def get_token_supply(self, pubkey):
            self.lookups += 1
            return SimpleNamespace(value=SimpleNamespace(decimals=6))

    rpc = SupplyRpc()
    client = _client(rpc)
    mint = str(Keypair().pubkey())

    assert client.get_token_decimals(mint) == 6
    assert client.get_token_decimals(mint) == 6
    assert rpc.lookups == 1
