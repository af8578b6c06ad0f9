"""
Typed Exception Hierarchy for the EPP financing kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the checkout service, the payroll scheduler, operators) must react
to failures precisely.  Every failure therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA attributes (order id, level, amounts...)

Example:
    try:
        approvals.resolve_level(level_id, ApprovalDecision.APPROVE, actor_id)
    except OutOfOrderError as e:
        respond(code=e.code, blocking_level=e.blocking_level)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    EppKernelError (base)
    |
    +-- ValidationError
    +-- ConfigurationError
    |
    +-- OrderError
    |   +-- OrderNotFoundError
    |   +-- InvalidOrderTransitionError
    |   +-- InvalidOrderStateError
    |
    +-- ApprovalError
    |   +-- ApprovalNotFoundError
    |   +-- ApprovalAlreadyResolvedError
    |   +-- ApprovalChainExistsError
    |   +-- OutOfOrderError
    |   +-- AuthorizationError
    |   +-- ApprovalTimeoutError
    |
    +-- ScheduleError
    |   +-- ScheduleAlreadyExistsError
    |
    +-- InstallmentError
    |   +-- InstallmentNotFoundError
    |   +-- InvalidInstallmentTransitionError
    |
    +-- ReconciliationError
    +-- AlertNotFoundError
    |
    +-- ExternalFailureError
    |   +-- DeductionRejectedError
    |
    +-- BatchError
    |   +-- BatchIdempotencyError
    |   +-- BatchAlreadyRunningError
    |   +-- TaskNotRegisteredError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
PROPAGATION
===============================================================================

- Validation, configuration and authorization errors are raised to the
  caller synchronously and never swallowed.
- ApprovalTimeoutError is the *reason code* written onto a level that the
  timeout sweep auto-rejects.  The sweep records it; it does not raise it.
- ReconciliationError is fatal for the affected order: automation puts the
  order on hold and raises an operator alert.  Nothing is auto-corrected.
- ExternalFailureError is retried by the payroll batch up to the configured
  bound; exhaustion cancels the installment and raises an alert.
- ConcurrencyError means another transaction won; the caller may retry.
"""


class EppKernelError(Exception):
    """
    Base exception for all EPP kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "EPP_KERNEL_ERROR"


class ValidationError(EppKernelError):
    """Caller supplied an invalid principal, term or amount."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class ConfigurationError(EppKernelError):
    """Rate policy, workflow template or settings are missing or invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(message)


# Order-related exceptions


class OrderError(EppKernelError):
    """Base exception for order lifecycle errors."""

    code: str = "ORDER_ERROR"


class OrderNotFoundError(OrderError):
    """Order with given ID was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InvalidOrderTransitionError(OrderError):
    """Order status change is not allowed by the order state machine."""

    code: str = "INVALID_ORDER_TRANSITION"

    def __init__(self, order_id: str, from_status: str, to_status: str):
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Order {order_id} cannot transition from {from_status} to {to_status}"
        )


class InvalidOrderStateError(OrderError):
    """Operation requires the order to be in a different status."""

    code: str = "INVALID_ORDER_STATE"

    def __init__(self, order_id: str, status: str, expected: str):
        self.order_id = order_id
        self.status = status
        self.expected = expected
        super().__init__(
            f"Order {order_id} is {status}; operation requires {expected}"
        )


# Approval-related exceptions


class ApprovalError(EppKernelError):
    """Base exception for approval-chain protocol errors."""

    code: str = "APPROVAL_ERROR"


class ApprovalNotFoundError(ApprovalError):
    """Order approval level with given ID was not found."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, approval_id: str):
        self.approval_id = approval_id
        super().__init__(f"Order approval not found: {approval_id}")


class ApprovalAlreadyResolvedError(ApprovalError):
    """Approval level was already approved or rejected."""

    code: str = "APPROVAL_ALREADY_RESOLVED"

    def __init__(self, approval_id: str, status: str):
        self.approval_id = approval_id
        self.status = status
        super().__init__(
            f"Order approval {approval_id} is already resolved ({status})"
        )


class ApprovalChainExistsError(ApprovalError):
    """An approval chain was already materialized for the order."""

    code: str = "APPROVAL_CHAIN_EXISTS"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Approval chain already exists for order {order_id}")


class OutOfOrderError(ApprovalError):
    """A level was resolved before every lower level was approved."""

    code: str = "APPROVAL_OUT_OF_ORDER"

    def __init__(self, approval_id: str, level: int, blocking_level: int):
        self.approval_id = approval_id
        self.level = level
        self.blocking_level = blocking_level
        super().__init__(
            f"Approval level {level} cannot be resolved while level "
            f"{blocking_level} is not approved"
        )


class AuthorizationError(ApprovalError):
    """Actor does not hold the role required by the approval level."""

    code: str = "APPROVAL_UNAUTHORIZED"

    def __init__(self, actor_id: str, required_role: str, approval_id: str):
        self.actor_id = actor_id
        self.required_role = required_role
        self.approval_id = approval_id
        super().__init__(
            f"Actor {actor_id} lacks role {required_role} "
            f"for order approval {approval_id}"
        )


class ApprovalTimeoutError(ApprovalError):
    """
    Approval level exceeded its timeout.

    Recorded as the resolution reason of an escalated level; the sweep
    never raises it.
    """

    code: str = "APPROVAL_TIMEOUT"

    def __init__(self, approval_id: str, timeout_days: int):
        self.approval_id = approval_id
        self.timeout_days = timeout_days
        super().__init__(
            f"Order approval {approval_id} timed out after {timeout_days} days"
        )


# Schedule / installment exceptions


class ScheduleError(EppKernelError):
    """Base exception for schedule generation errors."""

    code: str = "SCHEDULE_ERROR"


class ScheduleAlreadyExistsError(ScheduleError):
    """Installments were already generated for the order."""

    code: str = "SCHEDULE_ALREADY_EXISTS"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Schedule already exists for order {order_id}")


class InstallmentError(EppKernelError):
    """Base exception for installment lifecycle errors."""

    code: str = "INSTALLMENT_ERROR"


class InstallmentNotFoundError(InstallmentError):
    """Installment with given ID was not found."""

    code: str = "INSTALLMENT_NOT_FOUND"

    def __init__(self, installment_id: str):
        self.installment_id = installment_id
        super().__init__(f"Installment not found: {installment_id}")


class InvalidInstallmentTransitionError(InstallmentError):
    """Installment status change violates the monotonic lifecycle."""

    code: str = "INVALID_INSTALLMENT_TRANSITION"

    def __init__(self, installment_id: str, from_status: str, to_status: str):
        self.installment_id = installment_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Installment {installment_id} cannot transition "
            f"from {from_status} to {to_status}"
        )


# Ledger exceptions


class ReconciliationError(EppKernelError):
    """
    Ledger and installment state disagree.

    Fatal for the order.  Requires a manual audit; never auto-healed.
    """

    code: str = "RECONCILIATION_MISMATCH"

    def __init__(
        self,
        order_id: str,
        reason: str,
        expected: str | None = None,
        actual: str | None = None,
    ):
        self.order_id = order_id
        self.reason = reason
        self.expected = expected
        self.actual = actual
        super().__init__(f"Reconciliation failed for order {order_id}: {reason}")


class AlertNotFoundError(EppKernelError):
    """Operator alert with given ID was not found."""

    code: str = "ALERT_NOT_FOUND"

    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__(f"Operator alert not found: {alert_id}")


# External collaborator failures


class ExternalFailureError(EppKernelError):
    """An external collaborator (payroll gateway) reported a failure."""

    code: str = "EXTERNAL_FAILURE"


class DeductionRejectedError(ExternalFailureError):
    """The payroll/deduction gateway rejected an installment deduction."""

    code: str = "DEDUCTION_REJECTED"

    def __init__(self, installment_id: str, reason: str):
        self.installment_id = installment_id
        self.reason = reason
        super().__init__(
            f"Deduction rejected for installment {installment_id}: {reason}"
        )


# Batch exceptions


class BatchError(EppKernelError):
    """Base exception for payroll batch errors."""

    code: str = "BATCH_ERROR"


class BatchIdempotencyError(BatchError):
    """Batch ID was reused with a different cutoff date."""

    code: str = "BATCH_IDEMPOTENCY_CONFLICT"

    def __init__(self, batch_id: str, existing_cutoff: str, requested_cutoff: str):
        self.batch_id = batch_id
        self.existing_cutoff = existing_cutoff
        self.requested_cutoff = requested_cutoff
        super().__init__(
            f"Batch {batch_id} already registered for cutoff {existing_cutoff}; "
            f"cannot rerun it for {requested_cutoff}"
        )


class BatchAlreadyRunningError(BatchError):
    """Batch is currently RUNNING in another transaction."""

    code: str = "BATCH_ALREADY_RUNNING"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Batch {batch_id} is already running")


class TaskNotRegisteredError(BatchError):
    """No batch task is registered for the requested task type."""

    code: str = "BATCH_TASK_NOT_REGISTERED"

    def __init__(self, task_type: str):
        self.task_type = task_type
        super().__init__(f"Batch task not registered: {task_type}")


# Concurrency-related exceptions


class ConcurrencyError(EppKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability-related exceptions


class ImmutabilityError(EppKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Ledger entries are append-only; resolved approval levels are frozen.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
