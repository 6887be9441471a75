import json
import hashlib
import re
from typing import Any, List, Optional, Union

from inclusion_enforcer.core.errors import InvalidMessageId

MESSAGE_ID_BYTES = 32

_HEX_ID = re.compile(r'^(0x)?[0-9a-fA-F]{64}$')
_HEX_ADDRESS = re.compile(r'^0x[0-9a-fA-F]+$')


def to_canonical_json(data: Any, exclude_keys: Optional[List[str]] = None) -> bytes:
    """
    Serializes data to canonical JSON bytes.
    - keys sorted
    - no whitespace separators
    - ensure_ascii=False (UTF-8)
    - exclude_keys removed from top-level dict if present
    """
    if exclude_keys and isinstance(data, dict):
        data = {k: v for k, v in data.items() if k not in exclude_keys}

    return json.dumps(
        data,
        sort_keys=True,
        separators=(',', ':'),
        ensure_ascii=False
    ).encode('utf-8')


def compute_sha256_hash(data: Any, exclude_keys: Optional[List[str]] = None) -> str:
    """
    Computes SHA-256 hash of canonical JSON representation of data.
    Returns hex digest string.
    """
    json_bytes = to_canonical_json(data, exclude_keys)
    return hashlib.sha256(json_bytes).hexdigest()


def compute_message_id(payload: Any) -> str:
    """Derive a canonical message identifier from a message payload."""
    return "0x" + compute_sha256_hash(payload)


def normalize_message_id(value: Union[str, bytes]) -> str:
    """
    Return the canonical form of a message identifier.

    Accepts 32 raw bytes or 64 hex characters with or without a 0x prefix.
    The canonical form is 0x followed by lowercase hex.
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != MESSAGE_ID_BYTES:
            raise InvalidMessageId(value)
        return "0x" + bytes(value).hex()

    if not isinstance(value, str):
        raise InvalidMessageId(value)

    text = value.strip()
    if not _HEX_ID.match(text):
        raise InvalidMessageId(value)
    if text[:2] == "0x":
        text = text[2:]
    return "0x" + text.lower()


def normalize_account(value: str) -> str:
    """
    Normalize an account identifier for comparison.

    Hex addresses compare case-insensitively; other identifiers are kept
    verbatim apart from surrounding whitespace.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid account identifier: {value!r}")
    text = value.strip()
    if _HEX_ADDRESS.match(text):
        return text.lower()
    return text
