"""
AdminService -- guarded system setting and user role changes.

Both operation types are critical: they never run on a bypass flag and,
having no auto-approve threshold, always need a consumed approval.  The
approval is bound to the setting key or the user id.
"""

from __future__ import annotations

from sqlalchemy import select

from trade_kernel.domain.approval import ApprovalContext
from trade_kernel.domain.audit import AuditAction, AuditContext, AuditRecord
from trade_kernel.logging_config import get_logger
from trade_kernel.models.settings import SystemSettingModel, UserRoleModel
from trade_kernel.services.audit_sink import emit_audit
from trade_services.wiring import TradeCore, build_guard_context

logger = get_logger("services.admin")


class AdminService:
    def __init__(self, core: TradeCore):
        self._core = core

    def change_system_setting(
        self,
        key: str,
        value: str,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
        operation_id: str | None = None,
    ) -> SystemSettingModel:
        self._core.enforce_approval_requirement(build_guard_context(
            "system_setting_change",
            {"key": key, "value": value},
            audit_context,
            approval,
            operation_id,
        ))
        setting = self._core.session.execute(
            select(SystemSettingModel).where(SystemSettingModel.key == key)
        ).scalar_one_or_none()
        old_value = setting.value if setting is not None else None
        if setting is None:
            setting = SystemSettingModel(key=key)
            self._core.session.add(setting)
        setting.value = value
        setting.updated_by = audit_context.user_id or "system"
        setting.updated_at = self._core.clock.now_utc()
        self._core.session.flush()

        logger.info(
            "system_setting_changed",
            extra={"key": key, "old_value": old_value, "new_value": value},
        )
        emit_audit(self._core.audit_sink, audit_context, AuditRecord(
            entity_type="system_setting",
            action=AuditAction.CREATE if old_value is None else AuditAction.UPDATE,
            entity_id=key,
            operation_type="system_setting_change",
            old_values={"value": old_value} if old_value is not None else None,
            new_values={"value": value},
        ))
        return setting

    def change_user_role(
        self,
        user_id: str,
        role: str,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
        operation_id: str | None = None,
    ) -> UserRoleModel:
        self._core.enforce_approval_requirement(build_guard_context(
            "user_role_change",
            {"user_id": user_id, "role": role},
            audit_context,
            approval,
            operation_id,
        ))
        assignment = self._core.session.execute(
            select(UserRoleModel).where(UserRoleModel.user_id == user_id)
        ).scalar_one_or_none()
        old_role = assignment.role if assignment is not None else None
        if assignment is None:
            assignment = UserRoleModel(user_id=user_id)
            self._core.session.add(assignment)
        assignment.role = role
        assignment.updated_by = audit_context.user_id or "system"
        assignment.updated_at = self._core.clock.now_utc()
        self._core.session.flush()

        logger.info(
            "user_role_changed",
            extra={"target_user_id": user_id, "old_role": old_role, "new_role": role},
        )
        emit_audit(self._core.audit_sink, audit_context, AuditRecord(
            entity_type="user_role",
            action=AuditAction.CREATE if old_role is None else AuditAction.UPDATE,
            entity_id=user_id,
            operation_type="user_role_change",
            old_values={"role": old_role} if old_role is not None else None,
            new_values={"role": role},
        ))
        return assignment
