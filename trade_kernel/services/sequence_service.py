"""
SequenceNumberGenerator -- gap-free document numbers under contention.

Responsibility:
    Issues the next formatted identifier for an entity class
    (``PUR-000001``, ``CAP-000001``, ``SO-000001``, ``APR-000001``).  The
    identifier is derived from the owning table itself: no counter row is
    stored, so a rolled-back insert can never leave a gap.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by the ledger manager (capital entries), the approval workflow
    (request numbers), and trade_services (purchases, sale orders).

Algorithm:
    1. Acquire the class mutex ``<entity_class>_number_generation``.
    2. SELECT the lexicographically greatest value of the class column.
       Lexicographic order equals numeric order because every value has
       the same prefix and zero-padded width.
    3. Parse, increment, re-format.  No prior value -> ``<PREFIX>-000001``.
    The caller inserts the owning row in the same transaction; the mutex is
    released on commit, after the row is visible.

Invariants enforced:
    - Strictly increasing, no duplicates: only one transaction per class
      can be between steps 1 and commit.
    - No gaps visible to readers: a number only exists once its row commits.
    - Fixed width: a number past ``10**width - 1`` is refused with
      SequenceExhaustedError instead of widening the format.

Failure modes:
    - UnknownSequenceClassError: class has no configured format or column.
    - SequenceFormatError: the greatest stored value does not parse.
    - SequenceExhaustedError: padding width used up.
    - MutexTimeoutError: class mutex not acquired within the lock timeout.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.orm import InstrumentedAttribute, Session, sessionmaker

from trade_kernel.domain.policy import TradePolicySnapshot
from trade_kernel.domain.sequence import SequenceFormat
from trade_kernel.exceptions import UnknownSequenceClassError
from trade_kernel.logging_config import get_logger
from trade_kernel.models.approval import ApprovalRequestModel
from trade_kernel.models.capital_entry import CapitalEntryModel
from trade_kernel.models.purchase import PurchaseModel
from trade_kernel.models.sale_order import SaleOrderModel
from trade_kernel.services.mutex import DistributedMutex, mutex_for_session
from trade_kernel.services.retry_service import RetryService

logger = get_logger("services.sequence")

T = TypeVar("T")

_SEQUENCE_COLUMNS: dict[str, InstrumentedAttribute] = {
    "purchase": PurchaseModel.purchase_number,
    "capital_entry": CapitalEntryModel.entry_id,
    "sale_order": SaleOrderModel.order_number,
    "approval_request": ApprovalRequestModel.request_number,
}


class SequenceNumberGenerator:
    """
    Contract:
        ``next(entity_class)`` must be called inside the transaction that
        will insert the owning row.  The returned value is reserved for
        that transaction until it commits or rolls back.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT retry; see ``issue()`` for callers without a transaction.
    """

    def __init__(
        self,
        session: Session,
        policy: TradePolicySnapshot,
        mutex: DistributedMutex | None = None,
    ):
        self._session = session
        self._policy = policy
        self._mutex = mutex or mutex_for_session(session, policy.mutex)

    def format_for(self, entity_class: str) -> SequenceFormat:
        fmt = self._policy.sequence_format(entity_class)
        if fmt is None or entity_class not in _SEQUENCE_COLUMNS:
            raise UnknownSequenceClassError(entity_class)
        return fmt

    def latest(self, entity_class: str) -> str | None:
        """Greatest issued value for the class, without locking."""
        fmt = self.format_for(entity_class)
        column = _SEQUENCE_COLUMNS[entity_class]
        return self._session.execute(
            select(column)
            .where(column.like(f"{fmt.prefix}{fmt.separator}%"))
            .order_by(column.desc())
            .limit(1)
        ).scalar_one_or_none()

    def next(self, entity_class: str) -> str:
        fmt = self.format_for(entity_class)
        self._mutex.acquire(fmt.lock_name)

        # Pending rows of this class in the same session are autoflushed
        # by this query, so two calls in one transaction stay distinct.
        value = fmt.next_after(self.latest(entity_class))

        logger.debug(
            "sequence_allocated",
            extra={"entity_class": entity_class, "value": value},
        )
        return value

    @staticmethod
    def issue(
        session_factory: sessionmaker[Session],
        policy: TradePolicySnapshot,
        entity_class: str,
        create_row: Callable[[Session, str], T],
        retry: RetryService | None = None,
    ) -> T:
        """
        Allocate a number and insert its row in a transaction of its own.

        ``create_row(session, number)`` must add the owning row.  Conflict
        errors re-run the whole allocation; anything else propagates.
        """
        retry = retry or RetryService(session_factory, policy.retry)

        def work(session: Session) -> T:
            number = SequenceNumberGenerator(session, policy).next(entity_class)
            result = create_row(session, number)
            session.flush()
            return result

        return retry.run(f"issue_{entity_class}_number", work)
