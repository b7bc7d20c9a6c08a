"""
trade_services.warehouse_service -- Stock decisions and filter passes.

Responsibility:
    Moves a purchase's stock through the FIRST warehouse:
      AWAITING_DECISION -> AWAITING_FILTER    (decide_for_filtering)
      AWAITING_FILTER   -> READY_TO_SHIP + NON_CLEAN lot
                                              (execute_filter_operation)

Architecture position:
    Services.  ``warehouse_operation`` is on the internal-bypass
    allowlist, so warehouse workers call these with a signed service token
    and a justification; anyone else needs an approval.

Invariants enforced:
    - One filter pass per purchase at a time: the pass holds the resource
      mutex ``filter_operation_<purchase_id>`` for its whole transaction.
      Passes over different purchases do not wait on each other.
    - A pass filters the whole lot: ``input_kg`` must equal the lot's
      ``qty_kg_total``, and the outputs never exceed it.
    - All cost moves to the clean lot: unit cost becomes
      ``original_cost * input / clean``; the non-clean lot carries zero.
    - Stock rows are read ``FOR UPDATE`` before any status change.

Failure modes:
    - StockNotAvailableError when no lot is in the expected status.
    - FilterOutputExceedsInputError, InvalidQuantityError on bad outputs.
    - MutexTimeoutError when another pass holds the purchase too long.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from trade_kernel.db.types import to_decimal
from trade_kernel.domain.approval import ApprovalContext
from trade_kernel.domain.audit import AuditAction, AuditContext, AuditRecord
from trade_kernel.domain.warehouse import (
    FilterSplit,
    StockStatus,
    WarehouseCode,
    compute_filter_split,
)
from trade_kernel.exceptions import InvalidQuantityError, StockNotAvailableError
from trade_kernel.logging_config import get_logger
from trade_kernel.models.purchase import FilterRecordModel, WarehouseStockModel
from trade_kernel.services.audit_sink import emit_audit
from trade_services.wiring import TradeCore, build_guard_context

logger = get_logger("services.warehouse")

FILTER_OPERATION = "filter_operation"


@dataclass(frozen=True)
class FilterResult:
    purchase_id: UUID
    split: FilterSplit
    clean_stock_id: UUID
    non_clean_stock_id: UUID | None
    filter_record_id: UUID


class WarehouseService:
    def __init__(self, core: TradeCore):
        self._core = core

    def decide_for_filtering(
        self,
        purchase_id: UUID,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
    ) -> UUID:
        """Send a purchase's FIRST-warehouse lot to the filter queue."""
        self._core.enforce_approval_requirement(build_guard_context(
            "warehouse_operation",
            {"id": str(purchase_id), "status": StockStatus.AWAITING_FILTER.value},
            audit_context,
            approval,
        ))
        stock = self._lock_stock(purchase_id, StockStatus.AWAITING_DECISION)
        stock.status = StockStatus.AWAITING_FILTER.value
        stock.updated_at = self._core.clock.now_utc()
        self._core.session.flush()

        logger.info(
            "stock_sent_to_filter",
            extra={"purchase_id": str(purchase_id), "stock_id": str(stock.id)},
        )
        emit_audit(self._core.audit_sink, audit_context, AuditRecord(
            entity_type="warehouse_stock",
            action=AuditAction.UPDATE,
            entity_id=str(stock.id),
            operation_type="warehouse_operation",
            old_values={"status": StockStatus.AWAITING_DECISION.value},
            new_values={"status": StockStatus.AWAITING_FILTER.value},
        ))
        return stock.id

    def execute_filter_operation(
        self,
        purchase_id: UUID,
        input_kg: Decimal,
        output_clean_kg: Decimal,
        output_non_clean_kg: Decimal,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
    ) -> FilterResult:
        input_kg = to_decimal(input_kg)
        output_clean_kg = to_decimal(output_clean_kg)
        output_non_clean_kg = to_decimal(output_non_clean_kg)
        if input_kg <= 0:
            raise InvalidQuantityError("input_kg", input_kg)

        self._core.enforce_approval_requirement(build_guard_context(
            "warehouse_operation",
            {
                "id": str(purchase_id),
                "status": StockStatus.READY_TO_SHIP.value,
                "input_kg": str(input_kg),
                "output_clean_kg": str(output_clean_kg),
                "output_non_clean_kg": str(output_non_clean_kg),
            },
            audit_context,
            approval,
        ))

        self._core.resource_mutex.hold(FILTER_OPERATION, purchase_id)
        stock = self._lock_stock(purchase_id, StockStatus.AWAITING_FILTER)
        # a pass always consumes the whole lot; nothing may be left unaccounted
        if input_kg != stock.qty_kg_total:
            raise InvalidQuantityError("input_kg", input_kg)

        split = compute_filter_split(
            str(purchase_id),
            input_kg,
            output_clean_kg,
            output_non_clean_kg,
            stock.unit_cost_clean_usd or Decimal("0"),
        )

        now = self._core.clock.now_utc()
        created_by = audit_context.user_id or "system"

        stock.status = StockStatus.READY_TO_SHIP.value
        stock.qty_kg_total = split.output_clean_kg
        stock.qty_kg_clean = split.output_clean_kg
        stock.qty_kg_non_clean = Decimal("0")
        stock.unit_cost_clean_usd = split.clean_unit_cost_usd
        stock.updated_at = now

        non_clean = None
        if split.output_non_clean_kg > 0:
            non_clean = WarehouseStockModel(
                purchase_id=purchase_id,
                supplier_id=stock.supplier_id,
                warehouse=WarehouseCode.FIRST.value,
                status=StockStatus.NON_CLEAN.value,
                qty_kg_total=split.output_non_clean_kg,
                qty_kg_clean=Decimal("0"),
                qty_kg_non_clean=split.output_non_clean_kg,
                unit_cost_clean_usd=Decimal("0"),
                created_at=now,
                updated_at=now,
            )
            self._core.session.add(non_clean)

        record = FilterRecordModel(
            purchase_id=purchase_id,
            input_kg=split.input_kg,
            output_clean_kg=split.output_clean_kg,
            output_non_clean_kg=split.output_non_clean_kg,
            filter_yield=split.filter_yield,
            created_by=created_by,
            created_at=now,
        )
        self._core.session.add(record)
        self._core.session.flush()

        logger.info(
            "filter_operation_completed",
            extra={
                "purchase_id": str(purchase_id),
                "input_kg": str(split.input_kg),
                "output_clean_kg": str(split.output_clean_kg),
                "output_non_clean_kg": str(split.output_non_clean_kg),
                "filter_yield": str(split.filter_yield),
            },
        )
        emit_audit(self._core.audit_sink, audit_context, AuditRecord(
            entity_type="warehouse_stock",
            action=AuditAction.UPDATE,
            entity_id=str(stock.id),
            operation_type="warehouse_operation",
            description=f"Filter pass, yield {split.filter_yield}%",
            old_values={"status": StockStatus.AWAITING_FILTER.value},
            new_values={
                "status": StockStatus.READY_TO_SHIP.value,
                "qty_kg_clean": str(split.output_clean_kg),
                "unit_cost_clean_usd": str(split.clean_unit_cost_usd),
            },
        ))
        return FilterResult(
            purchase_id=purchase_id,
            split=split,
            clean_stock_id=stock.id,
            non_clean_stock_id=non_clean.id if non_clean is not None else None,
            filter_record_id=record.id,
        )

    def stock_for_purchase(self, purchase_id: UUID) -> list[WarehouseStockModel]:
        return list(self._core.session.execute(
            select(WarehouseStockModel)
            .where(WarehouseStockModel.purchase_id == purchase_id)
            .order_by(WarehouseStockModel.status)
        ).scalars())

    def _lock_stock(self, purchase_id: UUID, status: StockStatus) -> WarehouseStockModel:
        stock = self._core.session.execute(
            select(WarehouseStockModel)
            .where(
                WarehouseStockModel.purchase_id == purchase_id,
                WarehouseStockModel.warehouse == WarehouseCode.FIRST.value,
                WarehouseStockModel.status == status.value,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().first()
        if stock is None:
            raise StockNotAvailableError(str(purchase_id), status.value)
        return stock
