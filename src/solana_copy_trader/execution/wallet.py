"""Wallet helpers for loading the operator keypair."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ..config.settings import WalletConfig, get_app_config


@dataclass(slots=True)
class Wallet:
    """Wrapper around the operator's Solana keypair."""

    keypair: Keypair

    @property
    def public_key(self) -> Pubkey:
        return self.keypair.pubkey()

    @property
    def address(self) -> str:
        return str(self.keypair.pubkey())


def _decode_private_key(raw: str) -> bytes:
    """Accept a JSON byte array, a comma separated byte list, or base58."""

    text = raw.strip()
    if text.startswith("["):
        values: List[int] = json.loads(text)
        return bytes(values)
    if "," in text:
        return bytes(int(part) for part in text.split(",") if part.strip())
    return base58.b58decode(text)


def load_wallet(config: Optional[WalletConfig] = None) -> Wallet:
    cfg = config or get_app_config().wallet
    secret_key: Optional[bytes] = None
    try:
        if cfg.private_key:
            secret_key = _decode_private_key(cfg.private_key)
        elif cfg.keypair_path:
            path = Path(cfg.keypair_path).expanduser()
            with path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
            if isinstance(data, list):
                secret_key = bytes(data)
    except (ValueError, TypeError) as exc:
        raise ValueError(f"Wallet private key could not be decoded: {exc}") from exc
    if secret_key is None:
        raise ValueError(
            "Wallet configuration error - set WALLET__PRIVATE_KEY or WALLET__KEYPAIR_PATH"
        )
    if len(secret_key) != 64:
        raise ValueError(f"Wallet secret key must be 64 bytes, got {len(secret_key)}")

    keypair = Keypair.from_bytes(secret_key)
    wallet = Wallet(keypair=keypair)
    if cfg.operator_wallet_address and cfg.operator_wallet_address != wallet.address:
        raise ValueError("Configured operator wallet address does not match the private key")
    return wallet


__all__ = ["Wallet", "load_wallet"]
