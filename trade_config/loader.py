"""
Configuration Loader (``trade_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into typed ``trade_config.schema``
dataclasses.  Runtime callers use ``trade_config.get_active_config()``;
nothing else should read configuration files.

Invariants enforced
-------------------
* Required keys raise ``KeyError``; no silent defaults for them.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` is deterministic for identical input.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from trade_config.schema import (
    ApprovalChainDef,
    ApprovalChainStepDef,
    GuardSection,
    LedgerSection,
    MutexSection,
    RetrySection,
    SequenceDef,
    TradeConfiguration,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def merge_sections(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Overlay ``override`` on ``base`` one section deep.

    Mapping sections are merged key by key; lists and scalars replace the
    base value outright.
    """
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def _decimal_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, float):
        # YAML floats: go through repr so 0.01 stays 0.01
        return repr(value)
    return str(value)


def parse_guard(data: dict[str, Any]) -> GuardSection:
    return GuardSection(
        critical_operations=tuple(data["critical_operations"]),
        internal_bypass_operations=tuple(data.get("internal_bypass_operations", ())),
        amount_tolerance=_decimal_text(data.get("amount_tolerance", "0.01")),
        approval_validity_hours=int(data.get("approval_validity_hours", 24)),
        service_token_secret_env=data.get(
            "service_token_secret_env", "TRADE_SERVICE_TOKEN_SECRET",
        ),
        service_token_ttl_minutes=int(data.get("service_token_ttl_minutes", 15)),
        allowed_services=tuple(data.get("allowed_services", ())),
    )


def parse_ledger(data: dict[str, Any]) -> LedgerSection:
    return LedgerSection(
        base_currency=str(data.get("base_currency", "USD")).upper(),
        supported_currencies=tuple(
            str(c).upper() for c in data.get("supported_currencies", ("USD", "ETB"))
        ),
        prevent_negative_balance=bool(data.get("prevent_negative_balance", True)),
    )


def parse_sequence(data: dict[str, Any]) -> SequenceDef:
    return SequenceDef(
        entity_class=data["entity_class"],
        prefix=data["prefix"],
        width=int(data.get("width", 6)),
        separator=data.get("separator", "-"),
    )


def parse_approval_chain(data: dict[str, Any]) -> ApprovalChainDef:
    """
    Parse an ``ApprovalChainDef``.

    ``steps`` accepts either ``[{step: 1, role: finance}, ...]`` or a bare
    list of role names, numbered in order.
    """
    steps = []
    for index, item in enumerate(data.get("steps", ()), start=1):
        if isinstance(item, str):
            steps.append(ApprovalChainStepDef(step=index, role=item))
        else:
            steps.append(ApprovalChainStepDef(step=int(item.get("step", index)), role=item["role"]))
    currency = data.get("currency")
    return ApprovalChainDef(
        operation_type=data["operation_type"],
        auto_approve_below=_decimal_text(data.get("auto_approve_below")),
        currency=str(currency).upper() if currency else None,
        steps=tuple(steps),
        priority=data.get("priority", "normal"),
    )


def parse_configuration(data: dict[str, Any]) -> TradeConfiguration:
    """Parse a full configuration document."""
    return TradeConfiguration(
        config_id=data.get("config_id", "default"),
        version=int(data.get("version", 1)),
        guard=parse_guard(data["guard"]),
        ledger=parse_ledger(data.get("ledger", {})),
        mutex=MutexSection(
            lock_timeout_ms=int(data.get("mutex", {}).get("lock_timeout_ms", 10_000)),
        ),
        retry=RetrySection(**{
            key: int(value) for key, value in data.get("retry", {}).items()
            if key in ("max_attempts", "base_delay_ms", "max_jitter_ms")
        }),
        sequences=tuple(parse_sequence(s) for s in data.get("sequences", ())),
        approval_chains=tuple(
            parse_approval_chain(c) for c in data.get("approval_chains", ())
        ),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
