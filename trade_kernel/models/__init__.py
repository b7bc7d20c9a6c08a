"""ORM models for the trade kernel."""

from trade_kernel.models.approval import ApprovalRequestModel
from trade_kernel.models.audit_log import AuditLogModel
from trade_kernel.models.capital_entry import CapitalEntryModel
from trade_kernel.models.mutex_lock import MutexLockModel
from trade_kernel.models.purchase import (
    FilterRecordModel,
    PurchaseModel,
    WarehouseStockModel,
)
from trade_kernel.models.sale_order import SaleOrderModel
from trade_kernel.models.settings import SystemSettingModel, UserRoleModel

__all__ = [
    "ApprovalRequestModel",
    "AuditLogModel",
    "CapitalEntryModel",
    "FilterRecordModel",
    "MutexLockModel",
    "PurchaseModel",
    "SaleOrderModel",
    "SystemSettingModel",
    "UserRoleModel",
    "WarehouseStockModel",
]
