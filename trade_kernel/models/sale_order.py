"""
Module: trade_kernel.models.sale_order
Responsibility: ORM persistence for customer sale orders.
Architecture position: Kernel > Models.

Invariants enforced:
    - order_number (SO-000001) is unique.
    - client_reference is unique (idempotent create).
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from trade_kernel.db.base import TrackedBase


class SaleOrderModel(TrackedBase):
    __tablename__ = "sale_orders"

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_sale_orders_positive_total"),
        Index("ix_sale_orders_customer", "customer_id"),
    )

    order_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    client_reference: Mapped[str | None] = mapped_column(
        String(100), nullable=True, unique=True,
    )
    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<SaleOrder {self.order_number} {self.total_amount} {self.currency}>"
