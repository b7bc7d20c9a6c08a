"""
trade_services.purchase_service -- Guarded purchase creation with side effects.

Responsibility:
    Creates a supplier purchase together with everything it implies, in
    one transaction:
      - the ``purchases`` row with its ``PUR-xxxxxx`` number,
      - a CapitalOut funding entry when paid from capital,
      - the initial stock lot in the FIRST warehouse, awaiting decision.

Architecture position:
    Services.  Uses TradeCore for the guard, sequence generator and
    ledger.  Retried as a whole by TradeOrchestrator.

Invariants enforced:
    - Idempotency: ``client_reference`` is unique.  A repeated create with
      the same reference returns the existing purchase and writes nothing.
      A repeat whose core fields differ raises IdempotencyConflictError.
    - Lock order: purchase sequence -> ledger -> capital_entry sequence.
    - Funding never drives capital negative (ledger check under lock).

Failure modes:
    - ApprovalRequiredError / SecurityViolationError from the guard.
    - NegativeBalanceError when capital funding exceeds the balance.
    - InvalidQuantityError for non-positive weight or price.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from trade_kernel.db.types import normalize_currency, round_money, to_decimal
from trade_kernel.domain.approval import ApprovalContext
from trade_kernel.domain.audit import AuditAction, AuditContext, AuditRecord
from trade_kernel.domain.capital import CapitalEntryDraft, CapitalEntryType
from trade_kernel.domain.warehouse import StockStatus, WarehouseCode
from trade_kernel.exceptions import (
    IdempotencyConflictError,
    InvalidCapitalEntryError,
    InvalidQuantityError,
)
from trade_kernel.logging_config import get_logger
from trade_kernel.models.purchase import PurchaseModel, WarehouseStockModel
from trade_kernel.services.audit_sink import emit_audit
from trade_services.wiring import TradeCore, build_guard_context

logger = get_logger("services.purchase")

FUNDING_CAPITAL = "capital"
FUNDING_EXTERNAL = "external"


@dataclass(frozen=True)
class PurchaseRequest:
    """
    Input for ``PurchaseService.create_purchase``.

    ``amount_paid`` defaults to the full total.  ``exchange_rate`` is
    payment-currency units per USD and is required for non-USD purchases.
    """

    supplier_id: str
    weight_kg: Decimal
    price_per_kg: Decimal
    currency: str
    amount_paid: Decimal | None = None
    exchange_rate: Decimal | None = None
    funding_source: str = FUNDING_CAPITAL
    payment_method: str | None = "cash"
    order_id: str | None = None
    client_reference: str | None = None

    @property
    def total(self) -> Decimal:
        return round_money(to_decimal(self.weight_kg) * to_decimal(self.price_per_kg))


@dataclass(frozen=True)
class PurchaseResult:
    purchase_id: UUID
    purchase_number: str
    total: Decimal
    currency: str
    capital_entry_id: str | None
    stock_id: UUID | None
    created: bool


def purchase_operation_data(request: PurchaseRequest) -> dict:
    """Operation payload the guard and approvers see for a purchase."""
    return {
        "supplier_id": request.supplier_id,
        "weight_kg": str(request.weight_kg),
        "price_per_kg": str(request.price_per_kg),
        "total": str(request.total),
        "currency": request.currency.upper(),
        "amount_paid": str(request.amount_paid) if request.amount_paid is not None else None,
        "funding_source": request.funding_source,
        "client_reference": request.client_reference,
    }


def _replay_mismatches(existing: PurchaseModel, request: PurchaseRequest) -> list[str]:
    """Core fields of a repeated create that differ from the stored purchase."""
    amount_paid = request.amount_paid if request.amount_paid is not None else request.total
    expected = {
        "supplier_id": (existing.supplier_id, request.supplier_id),
        "weight_kg": (existing.weight_kg, to_decimal(request.weight_kg)),
        "price_per_kg": (existing.price_per_kg, to_decimal(request.price_per_kg)),
        "currency": (existing.currency, request.currency.strip().upper()),
        "amount_paid": (existing.amount_paid, round_money(to_decimal(amount_paid))),
        "funding_source": (existing.funding_source, request.funding_source),
    }
    return [name for name, (stored, given) in expected.items() if stored != given]


class PurchaseService:
    def __init__(self, core: TradeCore):
        self._core = core

    def create_purchase(
        self,
        request: PurchaseRequest,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
    ) -> PurchaseResult:
        if request.client_reference:
            existing = self._find_by_reference(request.client_reference)
            if existing is not None:
                mismatched = _replay_mismatches(existing, request)
                if mismatched:
                    raise IdempotencyConflictError(
                        "purchase", request.client_reference, mismatched,
                    )
                logger.info(
                    "purchase_already_exists",
                    extra={
                        "client_reference": request.client_reference,
                        "purchase_number": existing.purchase_number,
                    },
                )
                return PurchaseResult(
                    purchase_id=existing.id,
                    purchase_number=existing.purchase_number,
                    total=existing.total,
                    currency=existing.currency,
                    capital_entry_id=None,
                    stock_id=None,
                    created=False,
                )

        weight = to_decimal(request.weight_kg)
        price = to_decimal(request.price_per_kg)
        if weight <= 0:
            raise InvalidQuantityError("weight_kg", weight)
        if price <= 0:
            raise InvalidQuantityError("price_per_kg", price)
        currency = normalize_currency(request.currency)
        total = request.total
        amount_paid = round_money(
            to_decimal(request.amount_paid) if request.amount_paid is not None else total
        )
        if amount_paid < 0 or amount_paid > total:
            raise InvalidQuantityError("amount_paid", amount_paid)
        rate = self._usd_rate(currency, request.exchange_rate)

        self._core.enforce_approval_requirement(build_guard_context(
            "purchase",
            purchase_operation_data(request),
            audit_context,
            approval,
            operation_id=request.client_reference,
        ))

        now = self._core.clock.now_utc()
        created_by = audit_context.user_id or "system"
        purchase = PurchaseModel(
            purchase_number=self._core.next_sequence_number("purchase"),
            client_reference=request.client_reference,
            supplier_id=request.supplier_id,
            order_id=request.order_id,
            weight_kg=weight,
            price_per_kg=price,
            total=total,
            amount_paid=amount_paid,
            remaining=total - amount_paid,
            currency=currency,
            exchange_rate=request.exchange_rate,
            funding_source=request.funding_source,
            payment_method=request.payment_method,
            created_by=created_by,
            created_at=now,
        )
        self._core.session.add(purchase)
        self._core.session.flush()

        capital_entry_id = None
        if request.funding_source == FUNDING_CAPITAL and amount_paid > 0:
            entry = self._core.append_capital_entry(
                CapitalEntryDraft(
                    entry_type=CapitalEntryType.CAPITAL_OUT,
                    amount=amount_paid,
                    payment_currency=currency,
                    exchange_rate=None if currency == self._core.ledger.base_currency else rate,
                    created_by=created_by,
                    reference=str(purchase.id),
                    description=(
                        f"Purchase {purchase.purchase_number} from {request.supplier_id}"
                    ),
                ),
                audit_context,
            )
            capital_entry_id = entry.entry_id

        stock = WarehouseStockModel(
            purchase_id=purchase.id,
            supplier_id=request.supplier_id,
            warehouse=WarehouseCode.FIRST.value,
            status=StockStatus.AWAITING_DECISION.value,
            qty_kg_total=weight,
            qty_kg_clean=weight,
            qty_kg_non_clean=Decimal("0"),
            unit_cost_clean_usd=round_money(price / rate),
            created_at=now,
            updated_at=now,
        )
        self._core.session.add(stock)
        self._core.session.flush()

        logger.info(
            "purchase_created",
            extra={
                "purchase_number": purchase.purchase_number,
                "supplier_id": request.supplier_id,
                "total": str(total),
                "currency": currency,
                "capital_entry_id": capital_entry_id,
            },
        )
        emit_audit(self._core.audit_sink, audit_context, AuditRecord(
            entity_type="purchase",
            action=AuditAction.CREATE,
            entity_id=str(purchase.id),
            operation_type="purchase",
            description=f"Purchase {purchase.purchase_number} created",
            new_values={
                "purchase_number": purchase.purchase_number,
                "weight_kg": str(weight),
                "total": str(total),
                "amount_paid": str(amount_paid),
                "funding_source": request.funding_source,
            },
            financial_impact=total,
            currency=currency,
        ))
        return PurchaseResult(
            purchase_id=purchase.id,
            purchase_number=purchase.purchase_number,
            total=total,
            currency=currency,
            capital_entry_id=capital_entry_id,
            stock_id=stock.id,
            created=True,
        )

    def get_purchase(self, purchase_id: UUID) -> PurchaseModel | None:
        return self._core.session.get(PurchaseModel, purchase_id)

    def _find_by_reference(self, client_reference: str) -> PurchaseModel | None:
        return self._core.session.execute(
            select(PurchaseModel).where(PurchaseModel.client_reference == client_reference)
        ).scalar_one_or_none()

    def _usd_rate(self, currency: str, exchange_rate: Decimal | None) -> Decimal:
        if currency == self._core.ledger.base_currency:
            return Decimal("1")
        if exchange_rate is None:
            raise InvalidCapitalEntryError(f"Exchange rate required for {currency} purchases")
        rate = to_decimal(exchange_rate)
        if rate <= 0:
            raise InvalidCapitalEntryError("Exchange rate must be greater than zero")
        return rate
