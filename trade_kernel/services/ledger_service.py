"""
LedgerTransactionManager -- serialized appends to the capital ledger.

Responsibility:
    Appends CapitalIn / CapitalOut / Opening entries and Reverse
    corrections, recomputing the balance from the rows themselves under
    the global ``capital_balance_operations`` mutex, so that two writers
    can never both pass the negative-balance check against the same
    stale balance.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by trade_services (capital recording, purchase funding) after
    ApprovalGuard has permitted the write.

Algorithm (append_entry):
    1. Validate the draft (type, positive amount, currency, rate).
    2. Convert to the base currency: ``amount = payment_amount / rate``.
    3. Acquire ``capital_balance_operations`` (held until commit).
    4. SELECT SUM(signed amount) over every row.
    5. Reject with NegativeBalanceError when the entry lowers the balance
       below zero and the guard is enabled.
    6. Allocate ``CAP-xxxxxx`` from the sequence generator and INSERT.

Lock order:
    entity-class sequence (held by the caller, e.g. purchase) -> ledger ->
    capital_entry sequence.  Every caller follows this order, so two
    writers can never wait on each other in a cycle.

Invariants enforced:
    - balance >= 0 after every committed outflow while the guard is on.
    - Append-only: corrections are Reverse rows; a row is reversed at most
      once and a Reverse row itself cannot be reversed.

Failure modes:
    - InvalidCapitalEntryError, UnsupportedCurrencyError: bad draft.
    - NegativeBalanceError: outflow exceeds the available balance.
    - CapitalEntryNotFoundError, EntryAlreadyReversedError: bad reversal.
    - MutexTimeoutError: ledger lock not acquired in time.

Audit relevance:
    Each append emits a ``create`` audit record with the signed financial
    impact.  The manager never commits; the caller owns the transaction.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Numeric, case, func, select, type_coerce
from sqlalchemy.orm import Session

from trade_kernel.db.types import round_money, to_decimal
from trade_kernel.domain.audit import AuditAction, AuditContext, AuditRecord
from trade_kernel.domain.capital import (
    BalanceSnapshot,
    CapitalEntry,
    CapitalEntryDraft,
    CapitalEntryType,
    signed_effect,
)
from trade_kernel.domain.clock import Clock, SystemClock
from trade_kernel.domain.mutex_key import CAPITAL_BALANCE_LOCK
from trade_kernel.domain.policy import TradePolicySnapshot
from trade_kernel.exceptions import (
    CapitalEntryNotFoundError,
    EntryAlreadyReversedError,
    InvalidCapitalEntryError,
    NegativeBalanceError,
    UnsupportedCurrencyError,
)
from trade_kernel.logging_config import get_logger
from trade_kernel.models.capital_entry import CapitalEntryModel
from trade_kernel.services.audit_sink import AuditSink, emit_audit
from trade_kernel.services.mutex import DistributedMutex, mutex_for_session
from trade_kernel.services.sequence_service import SequenceNumberGenerator

logger = get_logger("services.ledger")

_ZERO = Decimal("0")


def _signed_amount_expression():
    """SQL CASE mirroring ``domain.capital.signed_effect``."""
    c = CapitalEntryModel.__table__.c
    return case(
        (c.entry_type.in_(("CapitalIn", "Opening")), c.amount),
        (c.entry_type == "CapitalOut", -c.amount),
        (
            (c.entry_type == "Reverse") & c.reversed_type.in_(("CapitalIn", "Opening")),
            -c.amount,
        ),
        (
            (c.entry_type == "Reverse") & (c.reversed_type == "CapitalOut"),
            c.amount,
        ),
        else_=0,
    )


class LedgerTransactionManager:
    """
    Contract:
        All public methods run inside the caller's transaction and only
        ``flush()``.  The ledger mutex acquired by ``append_entry`` and
        ``reverse_entry`` is held until that transaction ends.
    """

    def __init__(
        self,
        session: Session,
        policy: TradePolicySnapshot,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        mutex: DistributedMutex | None = None,
    ):
        self._session = session
        self._policy = policy
        self._clock = clock or SystemClock()
        self._audit_sink = audit_sink
        self._mutex = mutex or mutex_for_session(session, policy.mutex)
        self._sequences = SequenceNumberGenerator(session, policy, self._mutex)

    @property
    def base_currency(self) -> str:
        return self._policy.ledger.base_currency

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(self) -> BalanceSnapshot:
        """Current balance in the base currency, from an SQL aggregate."""
        row = self._session.execute(
            select(
                type_coerce(func.sum(_signed_amount_expression()), Numeric(38, 9)),
                func.count(CapitalEntryModel.id),
            )
        ).one()
        total, count = row
        balance = round_money(to_decimal(total)) if total is not None else round_money(_ZERO)
        return BalanceSnapshot(balance=balance, currency=self.base_currency, entry_count=count)

    def get_entry(self, entry_id: str) -> CapitalEntry | None:
        model = self._get_model(entry_id)
        return model.to_dto() if model is not None else None

    def _get_model(self, entry_id: str) -> CapitalEntryModel | None:
        return self._session.execute(
            select(CapitalEntryModel).where(CapitalEntryModel.entry_id == entry_id)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append_entry(
        self,
        draft: CapitalEntryDraft,
        audit_context: AuditContext | None = None,
    ) -> CapitalEntry:
        entry_type = self._validate_type(draft.entry_type)
        if entry_type == CapitalEntryType.REVERSE:
            raise InvalidCapitalEntryError(
                "Reverse entries are created with reverse_entry()"
            )
        payment_amount, currency, rate, amount = self._normalize(draft)

        self._mutex.acquire(CAPITAL_BALANCE_LOCK)
        current = self.get_balance().balance
        self._check_balance(current, entry_type, None, amount)

        model = self._insert(
            entry_type=entry_type,
            amount=amount,
            payment_amount=payment_amount,
            payment_currency=currency,
            exchange_rate=rate,
            reference=draft.reference,
            description=draft.description,
            created_by=draft.created_by,
        )
        entry = model.to_dto()

        logger.info(
            "capital_entry_appended",
            extra={
                "entry_id": entry.entry_id,
                "entry_type": entry.entry_type.value,
                "amount": str(entry.amount),
                "payment_amount": str(entry.payment_amount),
                "payment_currency": entry.payment_currency,
                "balance_before": str(current),
                "balance_after": str(current + entry.signed_amount),
            },
        )
        self._audit(entry, audit_context, current)
        return entry

    def reverse_entry(
        self,
        entry_id: str,
        description: str | None,
        created_by: str,
        audit_context: AuditContext | None = None,
    ) -> CapitalEntry:
        """
        Post a Reverse row cancelling ``entry_id``.

        Reversing an inflow lowers the balance and is subject to the same
        negative-balance check as a CapitalOut.
        """
        self._mutex.acquire(CAPITAL_BALANCE_LOCK)

        original = self._get_model(entry_id)
        if original is None:
            raise CapitalEntryNotFoundError(entry_id)
        if original.entry_type == CapitalEntryType.REVERSE.value:
            raise InvalidCapitalEntryError(
                f"{entry_id} is itself a reversal and cannot be reversed"
            )
        already = self._session.execute(
            select(CapitalEntryModel.entry_id).where(
                CapitalEntryModel.reverses_entry_id == entry_id
            )
        ).scalar_one_or_none()
        if already is not None:
            raise EntryAlreadyReversedError(entry_id)

        reversed_type = CapitalEntryType(original.entry_type)
        current = self.get_balance().balance
        self._check_balance(current, CapitalEntryType.REVERSE, reversed_type, original.amount)

        model = self._insert(
            entry_type=CapitalEntryType.REVERSE,
            amount=original.amount,
            payment_amount=original.payment_amount,
            payment_currency=original.payment_currency,
            exchange_rate=original.exchange_rate,
            reference=original.reference,
            description=description or f"Reversal of {entry_id}",
            created_by=created_by,
            reverses_entry_id=entry_id,
            reversed_type=reversed_type,
        )
        entry = model.to_dto()

        logger.info(
            "capital_entry_reversed",
            extra={
                "entry_id": entry.entry_id,
                "reverses_entry_id": entry_id,
                "reversed_type": reversed_type.value,
                "amount": str(entry.amount),
            },
        )
        self._audit(entry, audit_context, current)
        return entry

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_type(entry_type) -> CapitalEntryType:
        try:
            return CapitalEntryType(entry_type)
        except ValueError:
            raise InvalidCapitalEntryError(f"Unknown entry type: {entry_type!r}") from None

    def _normalize(
        self, draft: CapitalEntryDraft,
    ) -> tuple[Decimal, str, Decimal | None, Decimal]:
        try:
            payment_amount = to_decimal(draft.amount)
        except (TypeError, ArithmeticError) as exc:
            raise InvalidCapitalEntryError(f"Invalid amount: {draft.amount!r}") from exc
        if not payment_amount.is_finite() or payment_amount <= _ZERO:
            raise InvalidCapitalEntryError("Amount must be greater than zero")

        currency = (draft.payment_currency or "").strip().upper()
        if currency not in self._policy.ledger.supported_currencies:
            raise UnsupportedCurrencyError(draft.payment_currency)

        if currency == self.base_currency:
            rate = to_decimal(draft.exchange_rate) if draft.exchange_rate else None
            return payment_amount, currency, rate, round_money(payment_amount)

        if draft.exchange_rate is None:
            raise InvalidCapitalEntryError(
                f"Exchange rate required for {currency} entries"
            )
        rate = to_decimal(draft.exchange_rate)
        if rate <= _ZERO:
            raise InvalidCapitalEntryError("Exchange rate must be greater than zero")
        amount = round_money(payment_amount / rate)
        if amount <= _ZERO:
            raise InvalidCapitalEntryError(
                "Amount rounds to zero in the base currency"
            )
        return payment_amount, currency, rate, amount

    def _check_balance(
        self,
        current: Decimal,
        entry_type: CapitalEntryType,
        reversed_type: CapitalEntryType | None,
        amount: Decimal,
    ) -> None:
        effect = signed_effect(entry_type, amount, reversed_type)
        if effect >= _ZERO or not self._policy.ledger.prevent_negative_balance:
            return
        if current + effect < _ZERO:
            logger.warning(
                "negative_balance_rejected",
                extra={
                    "current_balance": str(current),
                    "amount": str(amount),
                    "entry_type": entry_type.value,
                },
            )
            raise NegativeBalanceError(current, amount, self.base_currency)

    def _insert(self, entry_type: CapitalEntryType, **fields) -> CapitalEntryModel:
        reversed_type = fields.pop("reversed_type", None)
        model = CapitalEntryModel(
            entry_id=self._sequences.next("capital_entry"),
            entry_type=entry_type.value,
            reversed_type=reversed_type.value if reversed_type else None,
            created_at=self._clock.now_utc(),
            **fields,
        )
        self._session.add(model)
        self._session.flush()
        return model

    def _audit(
        self,
        entry: CapitalEntry,
        audit_context: AuditContext | None,
        balance_before: Decimal,
    ) -> None:
        context = audit_context or AuditContext(user_id=entry.created_by)
        emit_audit(self._audit_sink, context, AuditRecord(
            entity_type="capital_entry",
            action=AuditAction.CREATE,
            entity_id=entry.entry_id,
            operation_type="capital_entry",
            description=entry.description,
            new_values={
                "entry_type": entry.entry_type.value,
                "amount": str(entry.amount),
                "payment_amount": str(entry.payment_amount),
                "payment_currency": entry.payment_currency,
                "reference": entry.reference,
                "reverses_entry_id": entry.reverses_entry_id,
            },
            old_values={"balance": str(balance_before)},
            financial_impact=entry.signed_amount,
            currency=self.base_currency,
        ))
