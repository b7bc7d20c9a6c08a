"""
Database mutexes -- transaction-scoped mutual exclusion.

Responsibility:
    Serializes logically related writers that may run in different
    processes.  Each lock is keyed by ``derive_mutex_key(name)`` and held
    until the acquiring transaction commits or rolls back; there is no
    explicit release.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Used by the
    ledger manager (global ``capital_balance_operations`` lock), the
    sequence generator (one lock per entity class), and resource-scoped
    operations such as the filter pass (one lock per purchase).

Implementations:
    AdvisoryLockMutex -- PostgreSQL ``pg_advisory_xact_lock`` bounded by a
        transaction-local ``lock_timeout``.
    LockTableMutex -- portable: upserts a ``mutex_locks`` row for the key
        and UPDATEs it, which holds a row lock (PostgreSQL) or the database
        write lock (SQLite) until the transaction ends.

Invariants enforced:
    - Writers contending for the same key observe strict commit order.
    - Writers on different keys never wait on each other (AdvisoryLockMutex
      and LockTableMutex on PostgreSQL; SQLite has a single writer anyway).
    - No in-process locks: correctness never depends on threads sharing
      memory.

Failure modes:
    - MutexTimeoutError (a TransientConflictError) when the wait exceeds
      the configured lock timeout.  The enclosing transaction is unusable
      afterwards and must be rolled back.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from sqlalchemy import text, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from trade_kernel.db.conflicts import as_mutex_timeout
from trade_kernel.domain.mutex_key import derive_mutex_key, resource_lock_name
from trade_kernel.domain.policy import MutexPolicy
from trade_kernel.logging_config import get_logger
from trade_kernel.models.mutex_lock import MutexLockModel

logger = get_logger("services.mutex")


class DistributedMutex(ABC):
    """
    Contract:
        ``acquire(name)`` blocks until the caller's transaction holds the
        lock for ``name`` and returns the derived key.  The lock is
        released when that transaction ends.  Re-acquiring a lock already
        held by the same transaction returns immediately.
    """

    def __init__(self, session: Session, policy: MutexPolicy | None = None):
        self._session = session
        self._policy = policy or MutexPolicy()

    @property
    def lock_timeout_ms(self) -> int:
        return self._policy.lock_timeout_ms

    def acquire(self, name: str) -> int:
        key = derive_mutex_key(name)
        try:
            self._acquire(key, name)
        except DBAPIError as exc:
            timeout = as_mutex_timeout(exc, name, self.lock_timeout_ms)
            if timeout is not None:
                logger.warning(
                    "mutex_timeout",
                    extra={"lock_name": name, "lock_key": key,
                           "timeout_ms": self.lock_timeout_ms},
                )
                raise timeout from exc
            raise
        logger.debug("mutex_acquired", extra={"lock_name": name, "lock_key": key})
        return key

    @abstractmethod
    def _acquire(self, key: int, name: str) -> None:
        ...


class AdvisoryLockMutex(DistributedMutex):
    """PostgreSQL transaction-scoped advisory lock."""

    def _acquire(self, key: int, name: str) -> None:
        if self.lock_timeout_ms > 0:
            self._session.execute(
                text("SELECT set_config('lock_timeout', :timeout, true)"),
                {"timeout": f"{self.lock_timeout_ms}ms"},
            )
        self._session.execute(
            text("SELECT pg_advisory_xact_lock(:key)"), {"key": key},
        )


class LockTableMutex(DistributedMutex):
    """Row-lock based mutex over the ``mutex_locks`` table."""

    def _acquire(self, key: int, name: str) -> None:
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise NotImplementedError(f"LockTableMutex does not support {dialect}")

        if dialect == "postgresql" and self.lock_timeout_ms > 0:
            self._session.execute(
                text("SELECT set_config('lock_timeout', :timeout, true)"),
                {"timeout": f"{self.lock_timeout_ms}ms"},
            )

        table = MutexLockModel.__table__
        self._session.execute(
            insert(table)
            .values(lock_key=key, name=name, acquisitions=0)
            .on_conflict_do_nothing(index_elements=["lock_key"])
        )
        self._session.execute(
            update(table)
            .where(table.c.lock_key == key)
            .values(acquisitions=table.c.acquisitions + 1)
        )


def mutex_for_session(session: Session, policy: MutexPolicy | None = None) -> DistributedMutex:
    """Advisory locks on PostgreSQL, the lock table everywhere else."""
    if session.get_bind().dialect.name == "postgresql":
        return AdvisoryLockMutex(session, policy)
    return LockTableMutex(session, policy)


class ResourceMutex:
    """
    Per-instance exclusion on top of a DistributedMutex.

    Usage:
        ResourceMutex(mutex).hold("filter_operation", purchase_id)
    """

    def __init__(self, mutex: DistributedMutex):
        self._mutex = mutex

    def hold(self, resource_class: str, resource_id) -> int:
        return self._mutex.acquire(resource_lock_name(resource_class, resource_id))
