"""
Module: trade_kernel.models.mutex_lock
Responsibility: One row per named mutex for backends without advisory locks.

LockTableMutex takes a transaction-scoped exclusive lock by UPDATE-ing the
row for a key: a row lock on PostgreSQL, the database write lock on SQLite.
The lock is released when the transaction commits or rolls back.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from trade_kernel.db.base import Base


class MutexLockModel(Base):
    __tablename__ = "mutex_locks"

    lock_key: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    acquisitions: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
