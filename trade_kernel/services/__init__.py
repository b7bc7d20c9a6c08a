"""Services for the trade kernel (write side)."""

from trade_kernel.services.approval_guard import ApprovalGuard
from trade_kernel.services.approval_workflow import (
    ApprovalWorkflowClient,
    ApprovalWorkflowService,
)
from trade_kernel.services.audit_sink import (
    AuditSink,
    DatabaseAuditSink,
    LoggingAuditSink,
    RecordingAuditSink,
    emit_audit,
)
from trade_kernel.services.configuration_service import ConfigurationService
from trade_kernel.services.ledger_service import LedgerTransactionManager
from trade_kernel.services.mutex import (
    AdvisoryLockMutex,
    DistributedMutex,
    LockTableMutex,
    ResourceMutex,
    mutex_for_session,
)
from trade_kernel.services.retry_service import RetryService
from trade_kernel.services.sequence_service import SequenceNumberGenerator
from trade_kernel.services.service_credentials import (
    ServiceCredential,
    ServiceCredentialIssuer,
    ServiceCredentialVerifier,
)

__all__ = [
    "AdvisoryLockMutex",
    "ApprovalGuard",
    "ApprovalWorkflowClient",
    "ApprovalWorkflowService",
    "AuditSink",
    "ConfigurationService",
    "DatabaseAuditSink",
    "DistributedMutex",
    "LedgerTransactionManager",
    "LockTableMutex",
    "LoggingAuditSink",
    "RecordingAuditSink",
    "ResourceMutex",
    "RetryService",
    "SequenceNumberGenerator",
    "ServiceCredential",
    "ServiceCredentialIssuer",
    "ServiceCredentialVerifier",
    "emit_audit",
    "mutex_for_session",
]
