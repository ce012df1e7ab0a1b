"""
Serialization utilities for the Recurve relayer.

Canonical subscription-id handling plus a JSON encoder for HexBytes, raw bytes,
enums and web3.py AttributeDicts.

Usage:
    from shared.serialization_utils import LedgerJSONEncoder, normalize_sub_id
    json.dumps(data, cls=LedgerJSONEncoder)
"""

import json
from enum import Enum
from json import JSONEncoder
from typing import Any

from hexbytes import HexBytes

from shared.constants import SUB_ID_BYTES


def normalize_sub_id(value: Any) -> str:
    """
    Render a bytes32 subscription id as a lowercase ``0x``-prefixed 64-hex string.

    Accepts raw bytes, HexBytes, or hex strings with or without prefix.
    Raises ``ValueError`` for anything that is not exactly 32 bytes.
    """
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        text = value.lower().removeprefix("0x")
        try:
            raw = bytes.fromhex(text)
        except ValueError as exc:
            raise ValueError(f"Invalid subscription id: {value!r}") from exc
    else:
        raise ValueError(f"Unsupported subscription id type: {type(value).__name__}")

    if len(raw) != SUB_ID_BYTES:
        raise ValueError(f"Subscription id must be {SUB_ID_BYTES} bytes, got {len(raw)}")
    return "0x" + raw.hex()


def sub_id_to_bytes(sub_id: str) -> bytes:
    """Inverse of ``normalize_sub_id`` for ABI encoding."""
    return bytes.fromhex(normalize_sub_id(sub_id)[2:])


def short_id(sub_id: str) -> str:
    """Abbreviated id for log lines."""
    return f"{sub_id[:10]}..."


class LedgerJSONEncoder(JSONEncoder):
    """JSON encoder handling HexBytes, bytes, enums and web3.py AttributeDict."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (HexBytes, bytes, bytearray)):
            return "0x" + bytes(obj).hex()
        if isinstance(obj, Enum):
            return obj.value
        # web3.py AttributeDict (receipts, logs)
        if hasattr(obj, "__iter__") and hasattr(obj, "keys"):
            return dict(obj)
        return super().default(obj)


def dumps(obj: Any, **kwargs: Any) -> str:
    """``json.dumps`` with the ledger encoder."""
    return json.dumps(obj, cls=LedgerJSONEncoder, **kwargs)
