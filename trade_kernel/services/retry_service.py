"""
RetryService -- bounded retry of whole units of work on transient conflicts.

Responsibility:
    Runs a callable inside a fresh session and transaction, and re-runs it
    from scratch when it fails with a conflict-class error (serialization
    failure, deadlock, unique race, lock timeout).  Every other error
    propagates on the first occurrence.

Architecture position:
    Kernel > Services -- imperative shell.  Used by the outer orchestrator
    (trade_services.orchestrator.TradeOrchestrator) and by
    SequenceNumberGenerator.issue for callers that do not own a
    transaction.  Primitive operations (ledger append, sequence next) never
    call this themselves.

Invariants enforced:
    - Each attempt gets its own session; a failed attempt's writes are
      rolled back before the next attempt starts, so a retried unit of
      work can never leave duplicates behind.
    - At most ``RetryPolicy.max_attempts`` attempts; the delay before
      retry ``n`` (0-based) is ``base_delay_ms * 2**n`` plus random jitter
      of up to ``max_jitter_ms``.  The schedule is a tenacity ``Retrying``
      built from the policy.

Failure modes:
    - TransientConflictError after the final attempt, chained to the
      driver error of that attempt.
    - Any non-conflict exception, unchanged, on the attempt that raised it.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.orm import Session, sessionmaker
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from trade_kernel.db.conflicts import classify_conflict
from trade_kernel.db.engine import session_scope
from trade_kernel.domain.policy import RetryPolicy
from trade_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


def _is_conflict(exc: BaseException) -> bool:
    return classify_conflict(exc) is not None


class RetryService:
    """
    Contract:
        ``run(name, work)`` calls ``work(session)`` inside
        ``session_scope`` and returns its result after a successful commit.

    Non-goals:
        - Does NOT make ``work`` idempotent.  ``work`` must rebuild all of
          its side effects from its inputs on each attempt.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._policy = policy or RetryPolicy()
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def _retrying(self, name: str) -> Retrying:
        policy = self._policy

        def log_scheduled(state: RetryCallState) -> None:
            conflict = classify_conflict(state.outcome.exception())
            logger.warning(
                "retry_scheduled",
                extra={
                    "operation": name,
                    "attempt": state.attempt_number,
                    "delay_seconds": round(state.next_action.sleep, 3),
                    "reason": conflict.reason,
                    "sqlstate": conflict.sqlstate,
                },
            )

        return Retrying(
            stop=stop_after_attempt(max(policy.max_attempts, 1)),
            wait=(
                wait_exponential(multiplier=policy.base_delay_ms / 1000.0)
                + wait_random(0, policy.max_jitter_ms / 1000.0)
            ),
            retry=retry_if_exception(_is_conflict),
            before_sleep=log_scheduled,
            sleep=self._sleep,
            reraise=True,
        )

    def _attempt(self, work: Callable[[Session], T]) -> T:
        with session_scope(self._session_factory) as session:
            return work(session)

    def run(self, name: str, work: Callable[[Session], T]) -> T:
        retrying = self._retrying(name)
        try:
            result = retrying(self._attempt, work)
        except Exception as exc:
            conflict = classify_conflict(exc)
            if conflict is None:
                raise
            logger.error(
                "retry_exhausted",
                extra={
                    "operation": name,
                    "attempts": retrying.statistics.get("attempt_number"),
                    "reason": conflict.reason,
                },
            )
            if conflict is exc:
                raise
            raise conflict from exc

        attempts = retrying.statistics.get("attempt_number", 1)
        if attempts > 1:
            logger.info("retry_succeeded", extra={"operation": name, "attempt": attempts})
        return result
