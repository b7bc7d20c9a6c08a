"""
Module: trade_kernel.models.settings
Responsibility: ORM persistence for runtime system settings and user roles,
    the two administrative records whose changes are guarded.
Architecture position: Kernel > Models.

Notes:
    ``PREVENT_NEGATIVE_BALANCE`` in system_settings overrides the configured
    ledger flag; ConfigurationService reads it once per transaction.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from trade_kernel.db.base import Base, UTCDateTime


class SystemSettingModel(Base):
    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_by: Mapped[str] = mapped_column(String(100), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<SystemSetting {self.key}={self.value}>"


class UserRoleModel(Base):
    __tablename__ = "user_roles"

    user_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    updated_by: Mapped[str] = mapped_column(String(100), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<UserRole {self.user_id}={self.role}>"
