"""
CapitalService -- guarded capital movements.

Records CapitalIn / CapitalOut / Opening entries and reversals.  Every
write passes the ApprovalGuard first; the ledger append and any approval
consumption share the caller's transaction.

Operation types:
    capital_entry         -- record_entry
    financial_adjustment  -- reverse_entry (entity = the reversed entry id)
"""

from __future__ import annotations

from trade_kernel.domain.approval import ApprovalContext
from trade_kernel.domain.audit import AuditContext
from trade_kernel.domain.capital import CapitalEntry, CapitalEntryDraft, CapitalEntryType
from trade_kernel.exceptions import CapitalEntryNotFoundError
from trade_kernel.logging_config import get_logger
from trade_services.wiring import TradeCore, build_guard_context

logger = get_logger("services.capital")


def capital_operation_data(draft: CapitalEntryDraft) -> dict:
    """Operation payload the guard and approvers see for a capital entry."""
    return {
        "entry_type": CapitalEntryType(draft.entry_type).value,
        "amount": str(draft.amount),
        "payment_currency": draft.payment_currency.upper(),
        "exchange_rate": str(draft.exchange_rate) if draft.exchange_rate is not None else None,
        "reference": draft.reference,
        "description": draft.description,
    }


class CapitalService:
    def __init__(self, core: TradeCore):
        self._core = core

    def record_entry(
        self,
        draft: CapitalEntryDraft,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
        operation_id: str | None = None,
    ) -> CapitalEntry:
        self._core.enforce_approval_requirement(build_guard_context(
            "capital_entry",
            capital_operation_data(draft),
            audit_context,
            approval,
            operation_id,
        ))
        return self._core.append_capital_entry(draft, audit_context)

    def reverse_entry(
        self,
        entry_id: str,
        reason: str,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
        operation_id: str | None = None,
    ) -> CapitalEntry:
        original = self._core.ledger.get_entry(entry_id)
        if original is None:
            raise CapitalEntryNotFoundError(entry_id)

        self._core.enforce_approval_requirement(build_guard_context(
            "financial_adjustment",
            {
                "id": entry_id,
                "amount": str(original.amount),
                "currency": self._core.ledger.base_currency,
                "reason": reason,
            },
            audit_context,
            approval,
            operation_id,
        ))
        entry = self._core.ledger.reverse_entry(
            entry_id, reason, audit_context.user_id or "system", audit_context,
        )
        logger.info(
            "capital_entry_reversal_recorded",
            extra={"entry_id": entry.entry_id, "reverses_entry_id": entry_id},
        )
        return entry

    def get_balance(self):
        return self._core.ledger.get_balance()
