"""
Module: trade_kernel.db.conflicts
Responsibility: Map driver-level errors onto TransientConflictError so the
    orchestrator can decide what is safe to retry without knowing which
    database is underneath.
Architecture position: Kernel > DB.  Imports only sqlalchemy and exceptions.

Conflict class (retryable):
    PostgreSQL  40001 serialization_failure
                40P01 deadlock_detected
                23505 unique_violation
                55P03 lock_not_available (lock_timeout expired)
    SQLite      "database is locked", "database table is locked",
                "UNIQUE constraint failed"

Everything else (check constraint failures, syntax errors, business rule
violations) is not a conflict and must propagate unchanged.
"""

from sqlalchemy.exc import DBAPIError

from trade_kernel.exceptions import MutexTimeoutError, TransientConflictError

SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"
UNIQUE_VIOLATION = "23505"
LOCK_NOT_AVAILABLE = "55P03"

_RETRYABLE_SQLSTATES = frozenset({
    SERIALIZATION_FAILURE,
    DEADLOCK_DETECTED,
    UNIQUE_VIOLATION,
    LOCK_NOT_AVAILABLE,
})

_SQLITE_LOCKED = ("database is locked", "database table is locked")
_SQLITE_UNIQUE = "unique constraint failed"


def sqlstate_of(exc: BaseException) -> str | None:
    """SQLSTATE carried by a wrapped driver error, if any."""
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def is_lock_timeout(exc: BaseException) -> bool:
    if sqlstate_of(exc) == LOCK_NOT_AVAILABLE:
        return True
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in _SQLITE_LOCKED)


def classify_conflict(exc: BaseException) -> TransientConflictError | None:
    """
    Return a TransientConflictError describing ``exc``, or None when the
    error is not a conflict.
    """
    if isinstance(exc, TransientConflictError):
        return exc
    if not isinstance(exc, DBAPIError):
        return None

    sqlstate = sqlstate_of(exc)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return TransientConflictError(str(exc.orig).strip(), sqlstate=sqlstate)

    message = str(exc.orig).lower()
    if any(marker in message for marker in _SQLITE_LOCKED):
        return TransientConflictError(message, sqlstate=None)
    if _SQLITE_UNIQUE in message:
        return TransientConflictError(message, sqlstate=UNIQUE_VIOLATION)
    return None


def as_mutex_timeout(
    exc: BaseException, lock_name: str, timeout_ms: int,
) -> MutexTimeoutError | None:
    if isinstance(exc, DBAPIError) and is_lock_timeout(exc):
        return MutexTimeoutError(lock_name, timeout_ms)
    return None
