"""
Deterministic hashing utilities.

Approval checksums must be reproducible across processes, so every hash
in the trade kernel goes through the canonical JSON form defined here:
sorted keys, no whitespace, and non-JSON scalars rendered as strings.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _scalar_text(obj: Any) -> str:
    if isinstance(obj, Decimal):
        # 10.50 and 10.5 must hash alike
        return str(obj.normalize())
    if isinstance(obj, Enum):
        return str(obj.value)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    raise TypeError(f"cannot canonicalize {type(obj).__name__}")


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_scalar_text)


def hash_payload(payload: dict) -> str:
    """Hex SHA-256 of the canonical form of ``payload``."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()


def hash_operation(operation_type: str, core_fields: dict[str, str | None]) -> str:
    """
    Checksum binding an approval to the fields that must not change.

    ``core_fields`` comes from ``operation_registry.core_field_snapshot``;
    the operation type is hashed with it so identical fields under two
    types never collide.
    """
    return hash_payload({"operation_type": operation_type, "core": core_fields})
