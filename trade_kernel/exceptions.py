"""
Typed Exception Hierarchy for the Trade Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A guarded mutation can be refused for very different reasons, and callers
must route each one differently:

  - a forged bypass is a security incident (alert, never retry)
  - a missing approval is a workflow step (submit a request, then retry)
  - a negative balance is a business refusal (show the user, no retry)
  - a lock timeout is transient (retry the whole unit of work)

Matching on message text is fragile, so every error is a class with a
machine-readable ``code`` and structured attributes.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from TradeKernelError:

    TradeKernelError (base)
    |
    +-- SecurityViolationError
    |   +-- CriticalBypassError
    |   +-- InvalidServiceCredentialError
    |   +-- ApprovalBindingError
    |   +-- ApprovalConsumptionError
    |
    +-- ApprovalRequiredError
    |
    +-- ApprovalError
    |   +-- ApprovalNotFoundError
    |   +-- InvalidApprovalTransitionError
    |
    +-- BusinessRuleViolationError
    |   +-- NegativeBalanceError
    |   +-- InvalidCapitalEntryError
    |   +-- UnsupportedCurrencyError
    |   +-- CapitalEntryNotFoundError
    |   +-- EntryAlreadyReversedError
    |   +-- StockNotAvailableError
    |   +-- InvalidQuantityError
    |   +-- FilterOutputExceedsInputError
    |   +-- IdempotencyConflictError
    |
    +-- TransientConflictError
    |   +-- MutexTimeoutError
    |
    +-- AuditSinkError
    |
    +-- SequenceError
    |   +-- SequenceExhaustedError
    |   +-- SequenceFormatError
    |   +-- UnknownSequenceClassError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError
        +-- ConfigValidationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Security        | SECURITY_VIOLATION          | Approval/operation binding mismatch
                | CRITICAL_BYPASS_ATTEMPT     | skip_approval on a critical operation
                | INVALID_SERVICE_CREDENTIAL  | Internal bypass without a valid token
                | APPROVAL_BINDING_MISMATCH   | Approval does not match the operation
                | APPROVAL_CONSUMPTION_FAILED | Lost the consumption race
----------------|-----------------------------|-----------------------------------------
Approval        | APPROVAL_REQUIRED           | Policy demands an approval
                | APPROVAL_NOT_FOUND          | Approval request id unknown
                | INVALID_APPROVAL_TRANSITION | Status change not in the lifecycle
----------------|-----------------------------|-----------------------------------------
Business rule   | NEGATIVE_BALANCE            | Outflow would drive balance below zero
                | INVALID_CAPITAL_ENTRY       | Malformed ledger entry
                | UNSUPPORTED_CURRENCY        | Currency not configured
                | CAPITAL_ENTRY_NOT_FOUND     | Entry id unknown
                | ENTRY_ALREADY_REVERSED      | Second reversal of the same entry
                | STOCK_NOT_AVAILABLE         | Stock row missing or in wrong status
                | INVALID_QUANTITY            | Non-positive weight or output
                | FILTER_OUTPUT_EXCEEDS_INPUT | clean + non-clean > input
                | IDEMPOTENCY_CONFLICT        | Reused client reference, different payload
----------------|-----------------------------|-----------------------------------------
Conflict        | TRANSIENT_CONFLICT          | Serialization / deadlock / unique race
                | MUTEX_TIMEOUT               | Lock wait exceeded the configured bound
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_SINK_FAILURE          | Audit write failed (logged only)
----------------|-----------------------------|-----------------------------------------
Sequence        | SEQUENCE_EXHAUSTED          | Counter would exceed the padding width
                | SEQUENCE_FORMAT_INVALID     | Stored identifier cannot be parsed
                | UNKNOWN_SEQUENCE_CLASS      | Entity class has no sequence format
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | UPDATE/DELETE on an append-only row
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIG_VALIDATION_FAILED    | YAML configuration failed validation

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ROUTE APPROVAL REQUIREMENTS INTO THE SUBMISSION FLOW:

    try:
        purchases.create_purchase(draft, approval=None, audit_context=ctx)
    except ApprovalRequiredError as e:
        request = workflow.create_approval_request(e.submission, ctx)

2. RETRY ONLY TRANSIENT CONFLICTS, AND ONLY AT THE OUTER LAYER:

    except TransientConflictError:
        # TradeOrchestrator re-runs the whole unit of work
        ...

3. NEVER DOWNGRADE SECURITY VIOLATIONS:

    except SecurityViolationError as e:
        alert_security_team(e)
        raise
"""

from decimal import Decimal


class TradeKernelError(Exception):
    """
    Base exception for all trade kernel errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "TRADE_KERNEL_ERROR"


# Security exceptions


class SecurityViolationError(TradeKernelError):
    """A guarded operation was attempted in a way that is never permitted."""

    code: str = "SECURITY_VIOLATION"

    def __init__(self, operation_type: str, reason: str):
        self.operation_type = operation_type
        self.reason = reason
        super().__init__(
            f"Security violation on {operation_type}: {reason}"
        )


class CriticalBypassError(SecurityViolationError):
    """skip_approval was requested for a critical operation type."""

    code: str = "CRITICAL_BYPASS_ATTEMPT"

    def __init__(self, operation_type: str, user_id: str | None):
        self.user_id = user_id
        super().__init__(
            operation_type,
            f"approval bypass is forbidden for critical operations "
            f"(requested by {user_id or 'anonymous'})",
        )


class InvalidServiceCredentialError(SecurityViolationError):
    """Internal bypass attempted without a verifiable service credential."""

    code: str = "INVALID_SERVICE_CREDENTIAL"


class ApprovalBindingError(SecurityViolationError):
    """The presented approval does not authorize this exact operation."""

    code: str = "APPROVAL_BINDING_MISMATCH"

    def __init__(self, operation_type: str, approval_request_id: str, reason: str):
        self.approval_request_id = approval_request_id
        super().__init__(
            operation_type,
            f"approval {approval_request_id} rejected: {reason}",
        )


class ApprovalConsumptionError(SecurityViolationError):
    """The approval validated but could not be consumed (e.g. lost a race)."""

    code: str = "APPROVAL_CONSUMPTION_FAILED"

    def __init__(self, operation_type: str, approval_request_id: str, reason: str):
        self.approval_request_id = approval_request_id
        super().__init__(
            operation_type,
            f"approval {approval_request_id} could not be consumed: {reason}",
        )


# Approval exceptions


class ApprovalRequiredError(TradeKernelError):
    """
    The operation needs an approved request before it may proceed.

    Carries an ``ApprovalSubmission`` so the caller can submit a new
    request without losing the original operation input.
    """

    code: str = "APPROVAL_REQUIRED"

    def __init__(self, submission):
        self.submission = submission
        self.operation_type = submission.operation_type
        self.amount = submission.amount
        self.currency = submission.currency
        self.business_context = submission.business_context
        self.estimated_wait = submission.estimated_wait
        super().__init__(
            f"Approval required for {submission.operation_type}"
            f" ({submission.amount} {submission.currency}),"
            f" estimated wait {submission.estimated_wait}"
        )


class ApprovalError(TradeKernelError):
    """Base exception for approval-record errors."""

    code: str = "APPROVAL_ERROR"


class ApprovalNotFoundError(ApprovalError):
    """Approval request id does not exist."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, approval_request_id: str):
        self.approval_request_id = approval_request_id
        super().__init__(f"Approval request {approval_request_id} not found")


class InvalidApprovalTransitionError(ApprovalError):
    """Requested status change is not permitted by the lifecycle."""

    code: str = "INVALID_APPROVAL_TRANSITION"

    def __init__(self, approval_request_id: str, from_status: str, to_status: str):
        self.approval_request_id = approval_request_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Approval {approval_request_id} cannot move "
            f"from {from_status} to {to_status}"
        )


# Business rule exceptions


class BusinessRuleViolationError(TradeKernelError):
    """Base exception for domain-rule breaches. Never retried."""

    code: str = "BUSINESS_RULE_VIOLATION"


class NegativeBalanceError(BusinessRuleViolationError):
    """An outflow would drive the capital balance below zero."""

    code: str = "NEGATIVE_BALANCE"

    def __init__(
        self,
        current_balance: Decimal,
        amount: Decimal,
        currency: str,
    ):
        self.current_balance = current_balance
        self.amount = amount
        self.currency = currency
        self.prospective_balance = current_balance - amount
        super().__init__(
            f"Insufficient capital: balance {current_balance} {currency}, "
            f"outflow {amount} {currency} would leave {self.prospective_balance}"
        )


class InvalidCapitalEntryError(BusinessRuleViolationError):
    """The entry draft is malformed."""

    code: str = "INVALID_CAPITAL_ENTRY"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid capital entry: {reason}")


class UnsupportedCurrencyError(BusinessRuleViolationError):
    """Currency is not in the configured set."""

    code: str = "UNSUPPORTED_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Unsupported currency: {currency}")


class CapitalEntryNotFoundError(BusinessRuleViolationError):
    """Capital entry id does not exist."""

    code: str = "CAPITAL_ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Capital entry {entry_id} not found")


class EntryAlreadyReversedError(BusinessRuleViolationError):
    """Capital entry has already been reversed (or is itself a reversal)."""

    code: str = "ENTRY_ALREADY_REVERSED"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Capital entry {entry_id} has already been reversed")


class StockNotAvailableError(BusinessRuleViolationError):
    """No stock row in the status the operation requires."""

    code: str = "STOCK_NOT_AVAILABLE"

    def __init__(self, purchase_id: str, expected_status: str):
        self.purchase_id = purchase_id
        self.expected_status = expected_status
        super().__init__(
            f"No stock in status {expected_status} for purchase {purchase_id}"
        )


class InvalidQuantityError(BusinessRuleViolationError):
    """A quantity that must be positive (or non-negative) is not."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field_name: str, value: Decimal):
        self.field_name = field_name
        self.value = value
        super().__init__(f"Invalid quantity for {field_name}: {value}")


class FilterOutputExceedsInputError(BusinessRuleViolationError):
    """Filter outputs (clean + non-clean) exceed the input quantity."""

    code: str = "FILTER_OUTPUT_EXCEEDS_INPUT"

    def __init__(
        self,
        purchase_id: str,
        input_kg: Decimal,
        output_clean_kg: Decimal,
        output_non_clean_kg: Decimal,
    ):
        self.purchase_id = purchase_id
        self.input_kg = input_kg
        self.output_clean_kg = output_clean_kg
        self.output_non_clean_kg = output_non_clean_kg
        super().__init__(
            f"Filter outputs for purchase {purchase_id} "
            f"({output_clean_kg} + {output_non_clean_kg}) exceed input {input_kg}"
        )


class IdempotencyConflictError(BusinessRuleViolationError):
    """A client reference was reused for an operation with different core fields."""

    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(self, entity_type: str, client_reference: str, mismatched_fields: list[str]):
        self.entity_type = entity_type
        self.client_reference = client_reference
        self.mismatched_fields = mismatched_fields
        super().__init__(
            f"Client reference {client_reference} already used for a different "
            f"{entity_type}: {', '.join(mismatched_fields)} differ"
        )


# Conflict exceptions


class TransientConflictError(TradeKernelError):
    """
    Serialization failure, deadlock, unique race, or lock contention.

    Eligible for bounded retry by the outer orchestrator only.
    """

    code: str = "TRANSIENT_CONFLICT"

    def __init__(self, reason: str, sqlstate: str | None = None):
        self.reason = reason
        self.sqlstate = sqlstate
        super().__init__(f"Transient conflict: {reason}")


class MutexTimeoutError(TransientConflictError):
    """Waiting for a database mutex exceeded the configured timeout."""

    code: str = "MUTEX_TIMEOUT"

    def __init__(self, lock_name: str, timeout_ms: int):
        self.lock_name = lock_name
        self.timeout_ms = timeout_ms
        super().__init__(
            f"timed out after {timeout_ms}ms waiting for mutex '{lock_name}'"
        )


# Audit exceptions


class AuditSinkError(TradeKernelError):
    """An audit record could not be written. Logged, never propagated."""

    code: str = "AUDIT_SINK_FAILURE"

    def __init__(self, sink: str, reason: str):
        self.sink = sink
        self.reason = reason
        super().__init__(f"Audit sink {sink} failed: {reason}")


# Sequence exceptions


class SequenceError(TradeKernelError):
    """Base exception for document-number errors."""

    code: str = "SEQUENCE_ERROR"


class SequenceExhaustedError(SequenceError):
    """The next number would not fit the fixed padding width."""

    code: str = "SEQUENCE_EXHAUSTED"

    def __init__(self, entity_class: str, last_value: str, max_number: int):
        self.entity_class = entity_class
        self.last_value = last_value
        self.max_number = max_number
        super().__init__(
            f"Sequence for {entity_class} exhausted at {last_value} "
            f"(maximum {max_number})"
        )


class SequenceFormatError(SequenceError):
    """A stored identifier does not match the class format."""

    code: str = "SEQUENCE_FORMAT_INVALID"

    def __init__(self, entity_class: str, value: str):
        self.entity_class = entity_class
        self.value = value
        super().__init__(
            f"Stored {entity_class} identifier '{value}' does not match its format"
        )


class UnknownSequenceClassError(SequenceError):
    """No sequence format registered for the entity class."""

    code: str = "UNKNOWN_SEQUENCE_CLASS"

    def __init__(self, entity_class: str):
        self.entity_class = entity_class
        super().__init__(f"No sequence format registered for '{entity_class}'")


# Immutability exceptions


class ImmutabilityError(TradeKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Capital entries are append-only; consumed approvals are final.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class ConfigurationError(TradeKernelError):
    """Base exception for configuration problems."""

    code: str = "CONFIGURATION_ERROR"


class ConfigValidationError(ConfigurationError):
    """Loaded configuration failed validation."""

    code: str = "CONFIG_VALIDATION_FAILED"

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(
            "Configuration validation failed: " + "; ".join(errors)
        )
