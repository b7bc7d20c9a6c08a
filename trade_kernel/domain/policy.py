"""
Per-transaction policy snapshot.

Responsibility:
    Immutable configuration values the guard, ledger, mutex, and sequence
    generator read while a unit of work runs.  A snapshot is taken once per
    transaction (``ConfigurationService.snapshot``) and passed in
    explicitly; nothing in the kernel looks configuration up ambiently.

Architecture position:
    Kernel > Domain -- pure value objects.  ``trade_config`` builds these
    from YAML; the kernel never imports ``trade_config``.

Invariants enforced:
    - The critical set and the internal-bypass set are disjoint.  A type
      cannot be both never-bypassable and bypassable.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import timedelta
from decimal import Decimal

from trade_kernel.domain.approval import ApprovalChain
from trade_kernel.domain.sequence import SequenceFormat

DEFAULT_CRITICAL_OPERATIONS: frozenset[str] = frozenset({
    "capital_entry",
    "purchase",
    "sale_order",
    "financial_adjustment",
    "user_role_change",
    "system_setting_change",
})

DEFAULT_INTERNAL_BYPASS_OPERATIONS: frozenset[str] = frozenset({
    "warehouse_operation",
    "shipping_operation",
})


@dataclass(frozen=True)
class GuardPolicy:
    critical_operations: frozenset[str] = DEFAULT_CRITICAL_OPERATIONS
    internal_bypass_operations: frozenset[str] = DEFAULT_INTERNAL_BYPASS_OPERATIONS
    amount_tolerance: Decimal = Decimal("0.01")
    approval_validity: timedelta = timedelta(hours=24)

    def __post_init__(self) -> None:
        overlap = self.critical_operations & self.internal_bypass_operations
        if overlap:
            raise ValueError(
                "Operation types cannot be both critical and bypass-eligible: "
                + ", ".join(sorted(overlap))
            )

    def is_critical(self, operation_type: str) -> bool:
        return operation_type in self.critical_operations

    def allows_internal_bypass(self, operation_type: str) -> bool:
        return (
            operation_type in self.internal_bypass_operations
            and not self.is_critical(operation_type)
        )


@dataclass(frozen=True)
class LedgerPolicy:
    base_currency: str = "USD"
    prevent_negative_balance: bool = True
    supported_currencies: frozenset[str] = frozenset({"USD", "ETB", "EUR"})


@dataclass(frozen=True)
class MutexPolicy:
    lock_timeout_ms: int = 10_000


@dataclass(frozen=True)
class RetryPolicy:
    """Delay before retry n (from 0): ``base_delay_ms * 2**n`` plus up to ``max_jitter_ms``."""

    max_attempts: int = 5
    base_delay_ms: int = 100
    max_jitter_ms: int = 100


DEFAULT_SEQUENCE_FORMATS: tuple[SequenceFormat, ...] = (
    SequenceFormat("purchase", "PUR", 6),
    SequenceFormat("capital_entry", "CAP", 6),
    SequenceFormat("sale_order", "SO", 6),
    SequenceFormat("approval_request", "APR", 6),
)


@dataclass(frozen=True)
class TradePolicySnapshot:
    """Everything the kernel reads from configuration, frozen for one transaction."""

    guard: GuardPolicy = field(default_factory=GuardPolicy)
    ledger: LedgerPolicy = field(default_factory=LedgerPolicy)
    mutex: MutexPolicy = field(default_factory=MutexPolicy)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    sequences: tuple[SequenceFormat, ...] = DEFAULT_SEQUENCE_FORMATS
    approval_chains: tuple[ApprovalChain, ...] = ()

    def sequence_format(self, entity_class: str) -> SequenceFormat | None:
        for fmt in self.sequences:
            if fmt.entity_class == entity_class:
                return fmt
        return None

    def chain_for(self, operation_type: str) -> ApprovalChain | None:
        for chain in self.approval_chains:
            if chain.operation_type == operation_type:
                return chain
        return None

    def with_ledger(self, **changes) -> TradePolicySnapshot:
        return replace(self, ledger=replace(self.ledger, **changes))
