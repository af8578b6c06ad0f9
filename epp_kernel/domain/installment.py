"""
Installment domain types (``epp_kernel.domain.installment``).

Responsibility
--------------
Installment lifecycle state machine, the persisted installment DTO, the
unpersisted draft produced by the schedule generator, and the per-order
summary returned to the checkout service.

Invariants enforced
-------------------
* ``INSTALLMENT_TRANSITIONS`` is the only source of legal status changes.
  Transitions are monotonic; FAILED -> SCHEDULED (retry) is the single
  permitted regression.
* CANCELLED and REFUNDED are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from epp_kernel.exceptions import InvalidInstallmentTransitionError


class InstallmentStatus(str, Enum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    DEDUCTED = "DEDUCTED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


INSTALLMENT_TRANSITIONS: dict[InstallmentStatus, frozenset[InstallmentStatus]] = {
    InstallmentStatus.PENDING: frozenset({
        InstallmentStatus.SCHEDULED,
        InstallmentStatus.CANCELLED,
    }),
    InstallmentStatus.SCHEDULED: frozenset({
        InstallmentStatus.DEDUCTED,
        InstallmentStatus.FAILED,
        InstallmentStatus.CANCELLED,
    }),
    InstallmentStatus.FAILED: frozenset({
        InstallmentStatus.SCHEDULED,
        InstallmentStatus.CANCELLED,
    }),
    InstallmentStatus.DEDUCTED: frozenset({
        InstallmentStatus.REFUNDED,
    }),
    InstallmentStatus.CANCELLED: frozenset(),
    InstallmentStatus.REFUNDED: frozenset(),
}

# Still owed by the employee: everything except a settled deduction.
OUTSTANDING_STATUSES: frozenset[InstallmentStatus] = frozenset(
    s for s in InstallmentStatus if s != InstallmentStatus.DEDUCTED
)

# Statuses the payroll batch may still act on.
OPEN_STATUSES: frozenset[InstallmentStatus] = frozenset({
    InstallmentStatus.PENDING,
    InstallmentStatus.SCHEDULED,
    InstallmentStatus.FAILED,
})


def validate_installment_transition(
    installment_id: UUID | str,
    from_status: InstallmentStatus,
    to_status: InstallmentStatus,
) -> None:
    """Raise InvalidInstallmentTransitionError unless the edge exists."""
    if to_status not in INSTALLMENT_TRANSITIONS[from_status]:
        raise InvalidInstallmentTransitionError(
            str(installment_id), from_status.value, to_status.value,
        )


@dataclass(frozen=True)
class InstallmentDraft:
    """One row of a generated schedule, before persistence."""

    installment_number: int
    amount: Decimal
    principal_amount: Decimal
    interest_amount: Decimal
    cut_off_date: date
    scheduled_date: date


@dataclass(frozen=True)
class Installment:
    """Persisted installment snapshot."""

    id: UUID
    order_id: UUID
    installment_number: int
    amount: Decimal
    principal_amount: Decimal
    interest_amount: Decimal
    status: InstallmentStatus
    cut_off_date: date
    scheduled_date: date
    deducted_date: date | None = None
    payroll_batch_id: str | None = None
    deduction_reference: str | None = None
    retry_count: int = 0
    last_failure_reason: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class InstallmentOrderSummary:
    """Settlement progress for one order."""

    order_id: UUID
    total_installments: int
    paid_count: int
    pending_count: int
    failed_count: int
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    installments: tuple[Installment, ...]
