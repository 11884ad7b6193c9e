"""Normalization of enhanced-transaction webhook payloads into typed events."""

from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from ..domain.errors import InvalidPayload
from ..domain.schemas import NativeTransfer, TokenTransfer, TransactionEvent
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS

_LOGGER = get_logger(__name__)


class _MalformedEntry(ValueError):
    """Raised internally when a single payload entry cannot be normalized."""


def _require_str(entry: Mapping[str, Any], key: str) -> str:
    value = entry.get(key)
    if not isinstance(value, str) or not value:
        raise _MalformedEntry(f"missing {key}")
    return value


def _optional_str(entry: Mapping[str, Any], key: str) -> str:
    value = entry.get(key)
    return value if isinstance(value, str) else ""


def _as_list(entry: Mapping[str, Any], key: str) -> List[Any]:
    value = entry.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise _MalformedEntry(f"{key} is not a list")
    return value


def _parse_native(raw: Any) -> NativeTransfer:
    if not isinstance(raw, Mapping):
        raise _MalformedEntry("native transfer is not an object")
    amount = raw.get("amount", 0)
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise _MalformedEntry("native transfer amount is not numeric")
    if not math.isfinite(amount) or amount < 0:
        raise _MalformedEntry("invalid native transfer amount")
    return NativeTransfer(
        from_address=_optional_str(raw, "fromUserAccount"),
        to_address=_optional_str(raw, "toUserAccount"),
        amount_lamports=int(amount),
    )


def _parse_token(raw: Any) -> TokenTransfer:
    if not isinstance(raw, Mapping):
        raise _MalformedEntry("token transfer is not an object")
    mint = _require_str(raw, "mint")
    amount_raw = raw.get("tokenAmount", 0)
    if isinstance(amount_raw, bool):
        raise _MalformedEntry("token amount is not numeric")
    try:
        amount = Decimal(str(amount_raw))
    except (InvalidOperation, ValueError) as exc:
        raise _MalformedEntry("token amount is not numeric") from exc
    if not amount.is_finite() or amount < 0:
        raise _MalformedEntry("invalid token amount")
    return TokenTransfer(
        mint=mint,
        from_address=_optional_str(raw, "fromUserAccount"),
        to_address=_optional_str(raw, "toUserAccount"),
        amount=amount,
    )


def _parse_slot(entry: Mapping[str, Any]) -> int:
    slot = entry.get("slot", 0)
    if slot is None:
        return 0
    if isinstance(slot, bool) or not isinstance(slot, int) or slot < 0:
        raise _MalformedEntry("invalid slot")
    return slot


def _parse_entry(entry: Any) -> TransactionEvent:
    if not isinstance(entry, Mapping):
        raise _MalformedEntry("entry is not an object")
    signature = _require_str(entry, "signature")
    natives: Tuple[NativeTransfer, ...] = tuple(
        _parse_native(item) for item in _as_list(entry, "nativeTransfers")
    )
    tokens: Tuple[TokenTransfer, ...] = tuple(
        _parse_token(item) for item in _as_list(entry, "tokenTransfers")
    )
    timestamp = entry.get("timestamp")
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        timestamp = None
    return TransactionEvent(
        signature=signature,
        slot=_parse_slot(entry),
        type=_optional_str(entry, "type").upper() or "UNKNOWN",
        fee_payer=_optional_str(entry, "feePayer"),
        native_transfers=natives,
        token_transfers=tokens,
        source=_optional_str(entry, "source"),
        timestamp=timestamp,
    )


def normalize_payload(payload: Any) -> List[TransactionEvent]:
    """Convert a decoded webhook body into normalized events.

    The body may be a single transaction object or a list of them. Entries that
    cannot be normalized are dropped and counted; valid siblings are returned in
    their original order.
    """

    if payload is None:
        raise InvalidPayload("Empty payload")
    if isinstance(payload, dict):
        if not payload:
            raise InvalidPayload("Empty payload")
        entries: Iterable[Any] = [payload]
    elif isinstance(payload, list):
        if not payload:
            raise InvalidPayload("Empty payload")
        entries = payload
    else:
        raise InvalidPayload(f"Unsupported payload type: {type(payload).__name__}")

    events: List[TransactionEvent] = []
    for index, entry in enumerate(entries):
        try:
            events.append(_parse_entry(entry))
        except _MalformedEntry as exc:
            METRICS.increment("normalizer_dropped", 1)
            signature = entry.get("signature") if isinstance(entry, dict) else None
            _LOGGER.warning(
                "Dropping malformed entry %s (%s): %s", index, signature or "no-signature", exc
            )
    METRICS.increment("normalizer_events", len(events))
    return events


class EventNormalizer:
    """Object wrapper so the normalizer can be injected like other collaborators."""

    def normalize(self, payload: Any) -> List[TransactionEvent]:
        return normalize_payload(payload)


def summarize_event(event: TransactionEvent) -> Dict[str, Any]:
    return {
        "signature": event.signature,
        "type": event.type,
        "source": event.source,
        "native_transfers": len(event.native_transfers),
        "token_transfers": len(event.token_transfers),
    }


__all__ = ["EventNormalizer", "normalize_payload", "summarize_event"]
