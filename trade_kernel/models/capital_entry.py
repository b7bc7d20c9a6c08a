"""
Module: trade_kernel.models.capital_entry
Responsibility: ORM persistence for the append-only capital ledger.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - Append-only: ORM listeners reject every UPDATE and DELETE.  Mistakes
      are corrected by a paired Reverse entry, never by editing a row.
    - Amounts are strictly positive (check constraint); the sign of an
      entry's effect comes from its type.
    - At most one reversal per entry: ``reverses_entry_id`` is unique.
    - ``entry_id`` (CAP-000001) is unique and allocated under the
      capital_entry sequence mutex.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - IntegrityError on a duplicate entry_id or a second reversal.

Audit relevance:
    The ledger balance is always recomputed from these rows, so the table
    is the single source of truth for available capital.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Numeric, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from trade_kernel.db.base import TrackedBase
from trade_kernel.domain.capital import CapitalEntry, CapitalEntryType
from trade_kernel.exceptions import ImmutabilityViolationError


class CapitalEntryModel(TrackedBase):
    """One immutable movement of trading capital."""

    __tablename__ = "capital_entries"

    __table_args__ = (
        CheckConstraint(
            "entry_type IN ('CapitalIn', 'CapitalOut', 'Opening', 'Reverse')",
            name="ck_capital_entries_valid_type",
        ),
        CheckConstraint("amount > 0", name="ck_capital_entries_positive_amount"),
        CheckConstraint(
            "(entry_type = 'Reverse') = (reverses_entry_id IS NOT NULL)",
            name="ck_capital_entries_reverse_link",
        ),
        Index("ix_capital_entries_reference", "reference"),
        Index("ix_capital_entries_created_at", "created_at"),
    )

    entry_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    entry_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Base-currency amount; always what the balance is computed from
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    payment_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    payment_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    reverses_entry_id: Mapped[str | None] = mapped_column(
        String(32), nullable=True, unique=True,
    )
    reversed_type: Mapped[str | None] = mapped_column(String(20), nullable=True)

    def __repr__(self) -> str:
        return f"<CapitalEntry {self.entry_id} {self.entry_type} {self.amount}>"

    def to_dto(self) -> CapitalEntry:
        return CapitalEntry(
            id=self.id,
            entry_id=self.entry_id,
            entry_type=CapitalEntryType(self.entry_type),
            amount=self.amount,
            payment_amount=self.payment_amount,
            payment_currency=self.payment_currency,
            exchange_rate=self.exchange_rate,
            reference=self.reference,
            description=self.description,
            reverses_entry_id=self.reverses_entry_id,
            reversed_type=(
                CapitalEntryType(self.reversed_type) if self.reversed_type else None
            ),
            created_by=self.created_by,
            created_at=self.created_at,
        )


@event.listens_for(CapitalEntryModel, "before_update")
def prevent_capital_entry_update(mapper, connection, target):
    """Capital entries are append-only."""
    raise ImmutabilityViolationError(
        entity_type="CapitalEntry",
        entity_id=str(target.entry_id),
        reason="Capital entries are immutable -- post a Reverse entry instead",
    )


@event.listens_for(CapitalEntryModel, "before_delete")
def prevent_capital_entry_delete(mapper, connection, target):
    """Capital entries are never deleted."""
    raise ImmutabilityViolationError(
        entity_type="CapitalEntry",
        entity_id=str(target.entry_id),
        reason="Capital entries are immutable -- cannot delete",
    )
