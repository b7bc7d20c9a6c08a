"""
SalesService -- guarded sale order creation.

Sale orders are numbered ``SO-xxxxxx`` under the sale_order sequence lock
and are idempotent by ``client_reference``; reusing a reference with a
different customer, total or currency raises IdempotencyConflictError.
Large orders need an approval per the ``sale_order`` chain.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from trade_kernel.db.types import normalize_currency, round_money, to_decimal
from trade_kernel.domain.approval import ApprovalContext
from trade_kernel.domain.audit import AuditAction, AuditContext, AuditRecord
from trade_kernel.exceptions import IdempotencyConflictError, InvalidQuantityError
from trade_kernel.logging_config import get_logger
from trade_kernel.models.sale_order import SaleOrderModel
from trade_kernel.services.audit_sink import emit_audit
from trade_services.wiring import TradeCore, build_guard_context

logger = get_logger("services.sales")


@dataclass(frozen=True)
class SaleOrderRequest:
    customer_id: str
    total_amount: Decimal
    currency: str
    notes: str | None = None
    client_reference: str | None = None


@dataclass(frozen=True)
class SaleOrderResult:
    order_id: UUID
    order_number: str
    total_amount: Decimal
    currency: str
    created: bool


def _replay_mismatches(existing: SaleOrderModel, request: SaleOrderRequest) -> list[str]:
    expected = {
        "customer_id": (existing.customer_id, request.customer_id),
        "total_amount": (existing.total_amount, round_money(to_decimal(request.total_amount))),
        "currency": (existing.currency, request.currency.strip().upper()),
    }
    return [name for name, (stored, given) in expected.items() if stored != given]


class SalesService:
    def __init__(self, core: TradeCore):
        self._core = core

    def create_sale_order(
        self,
        request: SaleOrderRequest,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
    ) -> SaleOrderResult:
        if request.client_reference:
            existing = self._core.session.execute(
                select(SaleOrderModel)
                .where(SaleOrderModel.client_reference == request.client_reference)
            ).scalar_one_or_none()
            if existing is not None:
                mismatched = _replay_mismatches(existing, request)
                if mismatched:
                    raise IdempotencyConflictError(
                        "sale_order", request.client_reference, mismatched,
                    )
                logger.info(
                    "sale_order_already_exists",
                    extra={
                        "client_reference": request.client_reference,
                        "order_number": existing.order_number,
                    },
                )
                return SaleOrderResult(
                    order_id=existing.id,
                    order_number=existing.order_number,
                    total_amount=existing.total_amount,
                    currency=existing.currency,
                    created=False,
                )

        total = round_money(to_decimal(request.total_amount))
        if total <= 0:
            raise InvalidQuantityError("total_amount", total)
        currency = normalize_currency(request.currency)

        self._core.enforce_approval_requirement(build_guard_context(
            "sale_order",
            {
                "customer_id": request.customer_id,
                "total_amount": str(total),
                "currency": currency,
                "client_reference": request.client_reference,
            },
            audit_context,
            approval,
            operation_id=request.client_reference,
        ))

        order = SaleOrderModel(
            order_number=self._core.next_sequence_number("sale_order"),
            client_reference=request.client_reference,
            customer_id=request.customer_id,
            total_amount=total,
            currency=currency,
            notes=request.notes,
            created_by=audit_context.user_id or "system",
            created_at=self._core.clock.now_utc(),
        )
        self._core.session.add(order)
        self._core.session.flush()

        logger.info(
            "sale_order_created",
            extra={
                "order_number": order.order_number,
                "customer_id": request.customer_id,
                "total_amount": str(total),
                "currency": currency,
            },
        )
        emit_audit(self._core.audit_sink, audit_context, AuditRecord(
            entity_type="sale_order",
            action=AuditAction.CREATE,
            entity_id=str(order.id),
            operation_type="sale_order",
            description=f"Sale order {order.order_number} created",
            new_values={"order_number": order.order_number, "customer_id": request.customer_id},
            financial_impact=total,
            currency=currency,
        ))
        return SaleOrderResult(
            order_id=order.id,
            order_number=order.order_number,
            total_amount=total,
            currency=currency,
            created=True,
        )
