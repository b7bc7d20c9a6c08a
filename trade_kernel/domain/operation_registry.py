"""
Operation registry -- per-operation-type capability table.

Responsibility:
    Maps every guarded operation type to the small set of functions the
    guard and the approval workflow need: which field names the entity the
    operation acts on, where its amount and currency live, how to describe
    it for approvers, how urgent it is, and which fields must not change
    between approval and execution.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.  Consumed by
    services/approval_guard.py and services/approval_workflow.py.

Invariants enforced:
    - Entity binding: an approval is bound to the subject returned by
      ``extract_entity_id`` at submission time and re-derived at execution.
    - Unknown operation types fall back to ``id`` / ``entity_id`` and carry
      no core fields; they are never silently treated as critical or
      non-critical here (that decision belongs to GuardPolicy).

Usage:
    register_operation(OperationBinding(
        operation_type="shipping_operation",
        entity_id=_first_of("customer_id", "shipment_id"),
        ...
    ))
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from trade_kernel.domain.approval import ApprovalPriority

OperationData = Mapping[str, Any]


def _as_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def _first_of(*keys: str) -> Callable[[OperationData], str | None]:
    def extract(data: OperationData) -> str | None:
        for key in keys:
            value = data.get(key)
            if value not in (None, ""):
                return str(value)
        return None

    return extract


def _money(amount_keys: tuple[str, ...], currency_key: str):
    def extract(data: OperationData) -> tuple[Decimal | None, str | None]:
        for key in amount_keys:
            if data.get(key) not in (None, ""):
                return _as_decimal(data.get(key)), str(data.get(currency_key) or "USD").upper()
        return Decimal("0"), str(data.get(currency_key) or "USD").upper()

    return extract


def _no_money(data: OperationData) -> tuple[Decimal | None, str | None]:
    return None, None


def _fixed(priority: ApprovalPriority):
    return lambda data, amount: priority


@dataclass(frozen=True)
class OperationBinding:
    """Capabilities registered for one operation type."""

    operation_type: str
    entity_id: Callable[[OperationData], str | None]
    money: Callable[[OperationData], tuple[Decimal | None, str | None]]
    business_context: Callable[[OperationData], str]
    priority: Callable[[OperationData, Decimal | None], ApprovalPriority]
    core_fields: tuple[str, ...] = ()


_REGISTRY: dict[str, OperationBinding] = {}


def register_operation(binding: OperationBinding) -> None:
    _REGISTRY[binding.operation_type] = binding


def registered_operation_types() -> frozenset[str]:
    return frozenset(_REGISTRY)


def get_operation_binding(operation_type: str) -> OperationBinding:
    binding = _REGISTRY.get(operation_type)
    if binding is not None:
        return binding
    return OperationBinding(
        operation_type=operation_type,
        entity_id=_first_of("id", "entity_id"),
        money=_money(("amount",), "currency"),
        business_context=lambda data: f"Operation: {operation_type}",
        priority=_fixed(ApprovalPriority.NORMAL),
    )


def extract_entity_id(operation_type: str, data: OperationData) -> str | None:
    return get_operation_binding(operation_type).entity_id(data)


def extract_money(
    operation_type: str, data: OperationData,
) -> tuple[Decimal | None, str | None]:
    return get_operation_binding(operation_type).money(data)


def describe_operation(operation_type: str, data: OperationData) -> str:
    return get_operation_binding(operation_type).business_context(data)


def derive_priority(
    operation_type: str, data: OperationData, amount: Decimal | None,
) -> ApprovalPriority:
    return get_operation_binding(operation_type).priority(data, amount)


def core_field_snapshot(operation_type: str, data: OperationData) -> dict[str, str | None]:
    """Normalized values of the fields that must match between approval and execution."""
    snapshot: dict[str, str | None] = {}
    for name in get_operation_binding(operation_type).core_fields:
        value = data.get(name)
        if value is None:
            snapshot[name] = None
        elif isinstance(value, (int, Decimal)) and not isinstance(value, bool):
            snapshot[name] = str(_as_decimal(value).normalize())
        else:
            text = str(value)
            try:
                snapshot[name] = str(Decimal(text).normalize())
            except InvalidOperation:
                snapshot[name] = text
    return snapshot


# ---------------------------------------------------------------------------
# Built-in operation types
# ---------------------------------------------------------------------------


def _capital_priority(data: OperationData, amount: Decimal | None) -> ApprovalPriority:
    if data.get("entry_type") == "CapitalOut" and (amount or 0) > Decimal("10000"):
        return ApprovalPriority.HIGH
    return ApprovalPriority.NORMAL


def _purchase_priority(data: OperationData, amount: Decimal | None) -> ApprovalPriority:
    amount = amount or Decimal("0")
    if amount > Decimal("50000"):
        return ApprovalPriority.HIGH
    if amount > Decimal("20000"):
        return ApprovalPriority.NORMAL
    return ApprovalPriority.LOW


def _sale_priority(data: OperationData, amount: Decimal | None) -> ApprovalPriority:
    amount = amount or Decimal("0")
    if amount > Decimal("100000"):
        return ApprovalPriority.URGENT
    if amount > Decimal("50000"):
        return ApprovalPriority.HIGH
    return ApprovalPriority.NORMAL


_SENSITIVE_SETTINGS = frozenset({"PREVENT_NEGATIVE_BALANCE", "USD_ETB_RATE"})

for _binding in (
    OperationBinding(
        operation_type="capital_entry",
        entity_id=_first_of("reference"),
        money=_money(("amount",), "payment_currency"),
        business_context=lambda d: f"Capital {d.get('entry_type')}: {d.get('description') or ''}".rstrip(),
        priority=_capital_priority,
        core_fields=("amount", "entry_type", "payment_currency"),
    ),
    OperationBinding(
        operation_type="purchase",
        entity_id=_first_of("supplier_id"),
        money=_money(("total",), "currency"),
        business_context=lambda d: f"Purchase: {d.get('weight_kg')}kg at {d.get('price_per_kg')} per kg",
        priority=_purchase_priority,
        core_fields=("total", "currency", "supplier_id", "weight_kg"),
    ),
    OperationBinding(
        operation_type="sale_order",
        entity_id=_first_of("customer_id"),
        money=_money(("total_amount",), "currency"),
        business_context=lambda d: f"Sales Order: {d.get('currency')} {d.get('total_amount')}",
        priority=_sale_priority,
        core_fields=("total_amount", "currency", "customer_id"),
    ),
    OperationBinding(
        operation_type="financial_adjustment",
        entity_id=_first_of("id", "entity_id"),
        money=_money(("amount",), "currency"),
        business_context=lambda d: f"Financial adjustment: {d.get('reason') or 'unspecified'}",
        priority=_fixed(ApprovalPriority.HIGH),
        core_fields=("amount", "currency"),
    ),
    OperationBinding(
        operation_type="user_role_change",
        entity_id=_first_of("user_id", "id"),
        money=_no_money,
        business_context=lambda d: f"User role change: {d.get('role')}",
        priority=lambda d, a: ApprovalPriority.URGENT if d.get("role") == "admin" else ApprovalPriority.HIGH,
        core_fields=("role",),
    ),
    OperationBinding(
        operation_type="system_setting_change",
        entity_id=_first_of("key"),
        money=_no_money,
        business_context=lambda d: f"System setting: {d.get('key')} = {d.get('value')}",
        priority=lambda d, a: (
            ApprovalPriority.HIGH if d.get("key") in _SENSITIVE_SETTINGS
            else ApprovalPriority.NORMAL
        ),
        core_fields=("key", "value"),
    ),
    OperationBinding(
        operation_type="warehouse_operation",
        entity_id=_first_of("id"),
        money=_no_money,
        business_context=lambda d: f"Warehouse operation: {d.get('status') or 'status change'}",
        priority=_fixed(ApprovalPriority.NORMAL),
    ),
    OperationBinding(
        operation_type="shipping_operation",
        entity_id=_first_of("customer_id", "shipment_id"),
        money=_money(("total_amount", "amount_paid"), "currency"),
        business_context=lambda d: f"Shipping operation: {d.get('shipment_number') or 'new shipment'}",
        priority=_fixed(ApprovalPriority.NORMAL),
    ),
):
    register_operation(_binding)

del _binding
