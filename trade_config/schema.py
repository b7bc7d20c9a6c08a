"""
TradeConfiguration schema.

Human-authored configuration for the trading core, as parsed from YAML by
the loader.  Everything here is plain frozen data: amounts stay strings
until the bridges turn them into Decimal-valued kernel policies.

Key distinction:
  TradeConfiguration  = source artifact (YAML, versioned, reviewable)
  TradePolicySnapshot = runtime artifact consumed by the kernel
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class GuardSection:
    """Which operation types are gated, and how approvals bind."""

    critical_operations: tuple[str, ...]
    internal_bypass_operations: tuple[str, ...] = ()
    amount_tolerance: str = "0.01"
    approval_validity_hours: int = 24
    service_token_secret_env: str = "TRADE_SERVICE_TOKEN_SECRET"
    service_token_ttl_minutes: int = 15
    allowed_services: tuple[str, ...] = ()


@dataclass(frozen=True)
class LedgerSection:
    base_currency: str = "USD"
    supported_currencies: tuple[str, ...] = ("USD", "ETB")
    prevent_negative_balance: bool = True


@dataclass(frozen=True)
class SequenceDef:
    entity_class: str
    prefix: str
    width: int = 6
    separator: str = "-"


@dataclass(frozen=True)
class MutexSection:
    lock_timeout_ms: int = 10_000


@dataclass(frozen=True)
class RetrySection:
    max_attempts: int = 5
    base_delay_ms: int = 100
    max_jitter_ms: int = 100


@dataclass(frozen=True)
class ApprovalChainStepDef:
    step: int
    role: str


@dataclass(frozen=True)
class ApprovalChainDef:
    """
    Approval chain for one operation type.

    ``auto_approve_below`` of None means every request needs approval.
    ``currency`` of None compares the threshold against the raw amount.
    """

    operation_type: str
    auto_approve_below: str | None = None
    currency: str | None = None
    steps: tuple[ApprovalChainStepDef, ...] = ()
    priority: str = "normal"


@dataclass(frozen=True)
class TradeConfiguration:
    """The complete, parsed configuration."""

    config_id: str
    version: int
    guard: GuardSection
    ledger: LedgerSection
    mutex: MutexSection
    retry: RetrySection
    sequences: tuple[SequenceDef, ...] = ()
    approval_chains: tuple[ApprovalChainDef, ...] = ()
    checksum: str = ""
