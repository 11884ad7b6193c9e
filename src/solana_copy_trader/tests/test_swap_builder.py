from __future__ import annotations

import base64

import pytest
import requests
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message

from solana_copy_trader.config import settings
from solana_copy_trader.domain.errors import SwapBuildError
from solana_copy_trader.domain.schemas import BlockhashInfo
from solana_copy_trader.execution.swap_builder import JupiterSwapBuilder

PROGRAM = str(Keypair().pubkey())
ACCOUNT = str(Keypair().pubkey())


def _instruction(data: bytes) -> dict:
    return {
        "programId": PROGRAM,
        "accounts": [{"pubkey": ACCOUNT, "isSigner": False, "isWritable": True}],
        "data": base64.b64encode(data).decode("ascii"),
    }


class FakeResponse:
    def __init__(self, payload) -> None:
        self._payload = payload

    def raise_for_status(self) -> None:
        return None

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, quote, instructions) -> None:
        self.quote = quote
        self.instructions = instructions
        self.calls = []

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append((method, url, kwargs))
        if isinstance(self.quote, Exception):
            raise self.quote
        return FakeResponse(self.quote if method == "get" else self.instructions)


def _builder(session: FakeSession) -> JupiterSwapBuilder:
    return JupiterSwapBuilder(
        config=settings.MarketDataConfig(),
        execution=settings.ExecutionConfig(slippage_bps=250),
        session=session,
    )


def test_fetch_instructions_orders_jupiter_sections() -> None:
    session = FakeSession(
        {"inAmount": "100", "outAmount": "5000", "priceImpactPct": "0.001"},
        {
            "computeBudgetInstructions": [_instruction(b"\x01")],
            "setupInstructions": [_instruction(b"\x02")],
            "swapInstruction": _instruction(b"\x03"),
            "cleanupInstruction": _instruction(b"\x04"),
        },
    )
    owner = Keypair().pubkey()

    instructions = _builder(session).fetch_instructions("MintX", 100, owner)

    assert [bytes(ix.data) for ix in instructions] == [b"\x01", b"\x02", b"\x03", b"\x04"]
    assert str(instructions[0].program_id) == PROGRAM
    assert instructions[0].accounts[0].is_writable
    quote_call, swap_call = session.calls
    assert quote_call[2]["params"]["slippageBps"] == "250"
    assert swap_call[2]["json"]["userPublicKey"] == str(owner)
    assert swap_call[2]["json"]["asLegacyTransaction"] is True


def test_missing_route_or_swap_instruction_raises() -> None:
    owner = Keypair().pubkey()

    with pytest.raises(SwapBuildError):
        _builder(FakeSession({"error": "no route"}, {})).fetch_instructions("MintX", 100, owner)
    with pytest.raises(SwapBuildError):
        _builder(FakeSession({"outAmount": "1"}, {"setupInstructions": []})).fetch_instructions(
            "MintX", 100, owner
        )
    with pytest.raises(SwapBuildError):
        _builder(FakeSession(requests.ConnectionError("down"), {})).fetch_instructions("MintX", 100, owner)
    with pytest.raises(SwapBuildError):
        _builder(FakeSession({"outAmount": "1"}, {})).fetch_instructions("MintX", 0, owner)


def test_assemble_uses_blockhash_and_payer() -> None:
    session = FakeSession({"outAmount": "1"}, {"swapInstruction": _instruction(b"\x09")})
    builder = _builder(session)
    payer = Keypair().pubkey()
    instructions = builder.fetch_instructions("MintX", 10, payer)
    blockhash = BlockhashInfo(
        blockhash=str(Hash.new_unique()), last_valid_block_height=1, fetched_at=0.0
    )

    message = builder.assemble(instructions, payer, blockhash)

    assert isinstance(message, Message)
    assert message.account_keys[0] == payer
    assert str(message.recent_blockhash) == blockhash.blockhash


def test_quote_below_price_floor_is_refused() -> None:
    session = FakeSession({"outAmount": "40000000"}, {"swapInstruction": _instruction(b"\x09")})
    owner = Keypair().pubkey()

    with pytest.raises(SwapBuildError, match="Price guard"):
        _builder(session).fetch_instructions("MintX", 100, owner, min_out_amount=50_000_000)
    assert len(session.calls) == 1

    accepted = FakeSession({"outAmount": "50000000"}, {"swapInstruction": _instruction(b"\x09")})
    assert _builder(accepted).fetch_instructions("MintX", 100, owner, min_out_amount=50_000_000)


def test_priority_fee_is_requested_when_configured() -> None:
    owner = Keypair().pubkey()
    paid = FakeSession({"outAmount": "1"}, {"swapInstruction": _instruction(b"\x09")})
    builder = JupiterSwapBuilder(
        config=settings.MarketDataConfig(),
        execution=settings.ExecutionConfig(priority_fee_lamports=1_900_000, priority_level="high"),
        session=paid,
    )

    builder.fetch_instructions("MintX", 100, owner)

    body = paid.calls[1][2]["json"]
    assert body["dynamicComputeUnitLimit"] is True
    assert body["prioritizationFeeLamports"]["priorityLevelWithMaxLamports"] == {
        "priorityLevel": "high",
        "maxLamports": 1_900_000,
        "global": False,
    }

    free = FakeSession({"outAmount": "1"}, {"swapInstruction": _instruction(b"\x09")})
    JupiterSwapBuilder(
        config=settings.MarketDataConfig(),
        execution=settings.ExecutionConfig(priority_fee_lamports=0),
        session=free,
    ).fetch_instructions("MintX", 100, owner)
    assert "prioritizationFeeLamports" not in free.calls[1][2]["json"]
