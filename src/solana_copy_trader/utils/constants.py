"""Shared constants for Solana trade handling."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


LAMPORTS_PER_SOL = 1_000_000_000

# Wrapped SOL; swap routes frequently move the native leg through this mint.
SOL_MINT = "So11111111111111111111111111111111111111112"

SECONDS_PER_HOUR = 3_600.0
SECONDS_PER_DAY = 86_400.0


def sol_to_lamports(amount_sol: float) -> int:
    return int(round(amount_sol * LAMPORTS_PER_SOL))


__all__ = [
    "utc_now",
    "LAMPORTS_PER_SOL",
    "SOL_MINT",
    "SECONDS_PER_HOUR",
    "SECONDS_PER_DAY",
    "sol_to_lamports",
]
