"""
Module: trade_kernel.models.purchase
Responsibility: ORM persistence for supplier purchases, the warehouse stock
    they create, and filter records that split that stock.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - purchase_number (PUR-000001) is unique and allocated under the
      purchase sequence mutex.
    - client_reference is unique: a retried create with the same key can
      never produce a second purchase.
    - Stock quantities are non-negative (check constraints).

Failure modes:
    - IntegrityError on duplicate purchase_number or client_reference.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from trade_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString


class PurchaseModel(TrackedBase):
    """A purchase of green coffee from a supplier."""

    __tablename__ = "purchases"

    __table_args__ = (
        CheckConstraint(
            "funding_source IN ('capital', 'external')",
            name="ck_purchases_funding_source",
        ),
        CheckConstraint("weight_kg > 0", name="ck_purchases_positive_weight"),
        CheckConstraint("amount_paid >= 0", name="ck_purchases_amount_paid"),
        Index("ix_purchases_supplier", "supplier_id"),
    )

    purchase_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    client_reference: Mapped[str | None] = mapped_column(
        String(100), nullable=True, unique=True,
    )
    supplier_id: Mapped[str] = mapped_column(String(100), nullable=False)
    order_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    weight_kg: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    price_per_kg: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    remaining: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    funding_source: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<Purchase {self.purchase_number} {self.total} {self.currency}>"


class WarehouseStockModel(Base):
    """A lot of stock in one warehouse, traceable to its purchase."""

    __tablename__ = "warehouse_stock"

    __table_args__ = (
        CheckConstraint("warehouse IN ('FIRST', 'FINAL')", name="ck_stock_warehouse"),
        CheckConstraint(
            "status IN ('AWAITING_DECISION', 'AWAITING_FILTER', "
            "'READY_TO_SHIP', 'NON_CLEAN')",
            name="ck_stock_status",
        ),
        CheckConstraint(
            "qty_kg_total >= 0 AND qty_kg_clean >= 0 AND qty_kg_non_clean >= 0",
            name="ck_stock_non_negative",
        ),
        Index("ix_stock_purchase_status", "purchase_id", "status"),
    )

    purchase_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("purchases.id"), nullable=False,
    )
    supplier_id: Mapped[str] = mapped_column(String(100), nullable=False)
    warehouse: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    qty_kg_total: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    qty_kg_clean: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    qty_kg_non_clean: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0"),
    )
    unit_cost_clean_usd: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<WarehouseStock {self.warehouse}/{self.status} "
            f"purchase={self.purchase_id} {self.qty_kg_total}kg>"
        )


class FilterRecordModel(TrackedBase):
    """Outcome of one filter pass over a purchase's stock."""

    __tablename__ = "filter_records"

    purchase_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("purchases.id"), nullable=False, index=True,
    )
    input_kg: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    output_clean_kg: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    output_non_clean_kg: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    filter_yield: Mapped[Decimal] = mapped_column(Numeric(9, 2), nullable=False)
