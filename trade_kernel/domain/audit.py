"""Audit record value objects handed to an AuditSink."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    APPROVE = "approve"
    REJECT = "reject"
    CONSUME = "consume"
    DENY = "deny"
    BYPASS = "bypass"
    VIEW = "view"


@dataclass(frozen=True)
class AuditContext:
    """Who is acting, and from where."""

    user_id: str | None = None
    correlation_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    source: str = "api"
    severity: AuditSeverity = AuditSeverity.INFO

    def with_severity(self, severity: AuditSeverity) -> AuditContext:
        return replace(self, severity=severity)


@dataclass(frozen=True)
class AuditRecord:
    entity_type: str
    action: AuditAction
    entity_id: str | None = None
    operation_type: str | None = None
    description: str | None = None
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    financial_impact: Decimal | None = None
    currency: str | None = None
    business_context: str | None = None
    approval_request_id: str | None = None
    severity: AuditSeverity = AuditSeverity.INFO
    extra: dict[str, Any] = field(default_factory=dict)
