"""
Capital ledger domain types.

Responsibility:
    Entry types, the draft an append starts from, the immutable entry
    snapshot, and the pure balance arithmetic shared by the SQL aggregate
    and the tests.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

Invariants enforced:
    - Balance = sum(CapitalIn, Opening) - sum(CapitalOut), with each
      Reverse carrying the opposite sign of the entry it reverses.
    - Amounts on drafts are strictly positive; direction comes from the
      entry type, never from the sign of the amount.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class CapitalEntryType(str, Enum):
    CAPITAL_IN = "CapitalIn"
    CAPITAL_OUT = "CapitalOut"
    OPENING = "Opening"
    REVERSE = "Reverse"


INFLOW_TYPES: frozenset[CapitalEntryType] = frozenset({
    CapitalEntryType.CAPITAL_IN,
    CapitalEntryType.OPENING,
})


def signed_effect(
    entry_type: CapitalEntryType,
    amount: Decimal,
    reversed_type: CapitalEntryType | None = None,
) -> Decimal:
    """Signed contribution of one entry to the balance."""
    if entry_type in INFLOW_TYPES:
        return amount
    if entry_type == CapitalEntryType.CAPITAL_OUT:
        return -amount
    if entry_type == CapitalEntryType.REVERSE:
        if reversed_type is None:
            raise ValueError("Reverse entries must record the type they reverse")
        return -signed_effect(reversed_type, amount)
    raise ValueError(f"Unknown capital entry type: {entry_type}")


def is_outflow(
    entry_type: CapitalEntryType,
    reversed_type: CapitalEntryType | None = None,
) -> bool:
    """True when the entry can only lower the balance."""
    return signed_effect(entry_type, Decimal("1"), reversed_type) < 0


def compute_balance(
    entries: Iterable[tuple[CapitalEntryType, Decimal, CapitalEntryType | None]],
) -> Decimal:
    total = Decimal("0")
    for entry_type, amount, reversed_type in entries:
        total += signed_effect(entry_type, amount, reversed_type)
    return total


@dataclass(frozen=True)
class CapitalEntryDraft:
    """
    Input to ``LedgerTransactionManager.append_entry``.

    ``amount`` is expressed in ``payment_currency``; when that differs from
    the ledger base currency an ``exchange_rate`` (units of payment currency
    per one base unit) is required.
    """

    entry_type: CapitalEntryType
    amount: Decimal
    payment_currency: str
    created_by: str
    exchange_rate: Decimal | None = None
    reference: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class CapitalEntry:
    """Immutable view of a persisted ledger row."""

    id: UUID
    entry_id: str
    entry_type: CapitalEntryType
    amount: Decimal
    payment_amount: Decimal
    payment_currency: str
    exchange_rate: Decimal | None
    reference: str | None
    description: str | None
    reverses_entry_id: str | None
    reversed_type: CapitalEntryType | None
    created_by: str
    created_at: datetime

    @property
    def signed_amount(self) -> Decimal:
        return signed_effect(self.entry_type, self.amount, self.reversed_type)


@dataclass(frozen=True)
class BalanceSnapshot:
    balance: Decimal
    currency: str
    entry_count: int
