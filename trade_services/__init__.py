"""
trade_services -- Guarded business operations over the trade kernel.

Responsibility:
    Domain writes (capital movements, purchases, warehouse filter passes,
    sale orders, administrative changes) composed from kernel services,
    and the retrying orchestrator that runs each one as a unit of work.

Architecture position:
    Services -- outermost layer.

    Dependency direction:
        trade_services/ -> trade_kernel/  (allowed)
        trade_services/ -> trade_config/  (allowed)
        trade_kernel/   -> trade_services/ (FORBIDDEN)

Invariants enforced:
    - Every critical write passes ApprovalGuard inside the transaction
      that performs it.
    - Kernel services are constructed only in ``wiring.TradeCore``.
"""

from trade_services.admin_service import AdminService
from trade_services.capital_service import CapitalService
from trade_services.orchestrator import TradeOrchestrator
from trade_services.purchase_service import PurchaseRequest, PurchaseResult, PurchaseService
from trade_services.sales_service import SaleOrderRequest, SaleOrderResult, SalesService
from trade_services.warehouse_service import FilterResult, WarehouseService
from trade_services.wiring import TradeCore, build_guard_context

__all__ = [
    "AdminService",
    "CapitalService",
    "FilterResult",
    "PurchaseRequest",
    "PurchaseResult",
    "PurchaseService",
    "SaleOrderRequest",
    "SaleOrderResult",
    "SalesService",
    "TradeCore",
    "TradeOrchestrator",
    "WarehouseService",
    "build_guard_context",
]
