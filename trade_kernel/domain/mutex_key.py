"""
Mutex key derivation.

Database mutexes are keyed by a signed 64-bit integer (the argument type of
``pg_advisory_xact_lock``).  Keys are derived from a lock name with SHA-256
so they are identical in every process and interpreter run; Python's
built-in ``hash()`` is salted per process and cannot be used.
"""

import hashlib

CAPITAL_BALANCE_LOCK = "capital_balance_operations"

_INT64_RANGE = 1 << 64
_INT64_MAX = (1 << 63) - 1


def derive_mutex_key(name: str) -> int:
    """Deterministic signed 64-bit key for ``name``."""
    if not name:
        raise ValueError("Mutex name must not be empty")
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    unsigned = int.from_bytes(digest[:8], "big")
    return unsigned - _INT64_RANGE if unsigned > _INT64_MAX else unsigned


def resource_lock_name(resource_class: str, resource_id) -> str:
    """Per-instance lock name, e.g. ``filter_operation_<purchase id>``."""
    return f"{resource_class}_{resource_id}"
