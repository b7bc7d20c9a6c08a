"""Utility modules for the trade kernel."""

from trade_kernel.utils.hashing import (
    canonicalize_json,
    hash_operation,
    hash_payload,
)

__all__ = [
    "canonicalize_json",
    "hash_operation",
    "hash_payload",
]
