"""
Deterministic hashing utilities.

Outbox payloads are hashed over their canonical JSON form so that a
delivered notification can be matched to the row that produced it.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Remove trailing zeros for consistency
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, no whitespace, Decimal/datetime/UUID handled
    consistently.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """Compute the SHA-256 hex digest of a payload's canonical JSON."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()


def to_json_safe(payload: dict) -> dict:
    """Round-trip a payload through canonical JSON so it stores in a JSON column."""
    return json.loads(canonicalize_json(payload))
