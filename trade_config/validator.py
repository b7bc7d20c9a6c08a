"""
Configuration Validator (``trade_config.validator``).

Responsibility
--------------
Checks a parsed ``TradeConfiguration`` before any snapshot is built from
it.  Errors block ``get_active_config()``; warnings are logged.

Invariants enforced
-------------------
* The critical set and the internal-bypass set are disjoint.
* Sequence entity classes and prefixes are unique; width >= 1.
* Amount tolerance and thresholds are non-negative decimals.
* Chain priorities are known values; chain step numbers are unique.
* Every critical operation type has a chain (warning only: the workflow
  fails closed and requires approval for types without one).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from trade_config.schema import TradeConfiguration

_PRIORITIES = frozenset({"low", "normal", "high", "urgent"})


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` is ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def _non_negative(text: str | None) -> bool:
    if text is None:
        return True
    try:
        value = Decimal(text)
    except InvalidOperation:
        return False
    return value.is_finite() and value >= 0


def validate_configuration(config: TradeConfiguration) -> ConfigValidationResult:
    result = ConfigValidationResult()
    _validate_guard(config, result)
    _validate_ledger(config, result)
    _validate_sequences(config, result)
    _validate_chains(config, result)
    if config.mutex.lock_timeout_ms < 0:
        result.add_error("mutex.lock_timeout_ms must be >= 0")
    if config.retry.max_attempts < 1:
        result.add_error("retry.max_attempts must be >= 1")
    if config.retry.base_delay_ms < 0 or config.retry.max_jitter_ms < 0:
        result.add_error("retry delays must be >= 0")
    return result


def _validate_guard(config: TradeConfiguration, result: ConfigValidationResult) -> None:
    guard = config.guard
    if not guard.critical_operations:
        result.add_error("guard.critical_operations must not be empty")
    overlap = set(guard.critical_operations) & set(guard.internal_bypass_operations)
    if overlap:
        result.add_error(
            "Operation types cannot be both critical and bypass-eligible: "
            + ", ".join(sorted(overlap))
        )
    if not _non_negative(guard.amount_tolerance):
        result.add_error(f"guard.amount_tolerance is invalid: {guard.amount_tolerance!r}")
    if guard.approval_validity_hours <= 0:
        result.add_error("guard.approval_validity_hours must be > 0")
    if guard.service_token_ttl_minutes <= 0:
        result.add_error("guard.service_token_ttl_minutes must be > 0")


def _validate_ledger(config: TradeConfiguration, result: ConfigValidationResult) -> None:
    ledger = config.ledger
    if ledger.base_currency not in ledger.supported_currencies:
        result.add_error(
            f"ledger.base_currency {ledger.base_currency} is not in supported_currencies"
        )
    for code in ledger.supported_currencies:
        if len(code) != 3 or not code.isalpha():
            result.add_error(f"Invalid currency code in ledger.supported_currencies: {code!r}")


def _validate_sequences(config: TradeConfiguration, result: ConfigValidationResult) -> None:
    classes: set[str] = set()
    prefixes: set[str] = set()
    for seq in config.sequences:
        if seq.entity_class in classes:
            result.add_error(f"Duplicate sequence entity class: {seq.entity_class}")
        classes.add(seq.entity_class)
        if seq.prefix in prefixes:
            result.add_error(f"Duplicate sequence prefix: {seq.prefix}")
        prefixes.add(seq.prefix)
        if seq.width < 1:
            result.add_error(f"Sequence {seq.entity_class} width must be >= 1")
        if not seq.prefix or not seq.separator:
            result.add_error(f"Sequence {seq.entity_class} needs a prefix and separator")


def _validate_chains(config: TradeConfiguration, result: ConfigValidationResult) -> None:
    seen: set[str] = set()
    for chain in config.approval_chains:
        if chain.operation_type in seen:
            result.add_error(f"Duplicate approval chain: {chain.operation_type}")
        seen.add(chain.operation_type)
        if not _non_negative(chain.auto_approve_below):
            result.add_error(
                f"Chain {chain.operation_type}: auto_approve_below is invalid: "
                f"{chain.auto_approve_below!r}"
            )
        if chain.priority not in _PRIORITIES:
            result.add_error(f"Chain {chain.operation_type}: unknown priority {chain.priority!r}")
        steps = [s.step for s in chain.steps]
        if len(steps) != len(set(steps)):
            result.add_error(f"Chain {chain.operation_type}: duplicate step numbers")

    for op_type in config.guard.critical_operations:
        if op_type not in seen:
            result.add_warning(
                f"Critical operation {op_type} has no approval chain; "
                f"every request will require approval"
            )
