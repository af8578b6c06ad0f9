"""
Order domain types.

The order status is owned by the approval engine until the chain resolves,
then by schedule creation and settlement.  ``ORDER_TRANSITIONS`` lists the
only legal edges; CANCELLED and CLOSED are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from epp_kernel.domain.rate_policy import CustomerClass
from epp_kernel.exceptions import InvalidOrderTransitionError


class OrderStatus(str, Enum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    CANCELLED = "CANCELLED"
    SCHEDULED = "SCHEDULED"
    SETTLING = "SETTLING"
    CLOSED = "CLOSED"


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING_APPROVAL: frozenset({
        OrderStatus.APPROVED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.APPROVED: frozenset({
        OrderStatus.SCHEDULED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.SCHEDULED: frozenset({
        OrderStatus.SETTLING,
        OrderStatus.CLOSED,
    }),
    # A refund re-opens a closed order for settlement tracking.
    OrderStatus.SETTLING: frozenset({
        OrderStatus.CLOSED,
    }),
    OrderStatus.CLOSED: frozenset({
        OrderStatus.SETTLING,
    }),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_ORDER_STATUSES: frozenset[OrderStatus] = frozenset({
    OrderStatus.CANCELLED,
})

# Statuses in which the payroll batch may settle installments.
SETTLEABLE_ORDER_STATUSES: frozenset[OrderStatus] = frozenset({
    OrderStatus.SCHEDULED,
    OrderStatus.SETTLING,
})


def validate_order_transition(
    order_id: UUID | str, from_status: OrderStatus, to_status: OrderStatus,
) -> None:
    if to_status not in ORDER_TRANSITIONS[from_status]:
        raise InvalidOrderTransitionError(
            str(order_id), from_status.value, to_status.value,
        )


@dataclass(frozen=True)
class Order:
    """Snapshot of a financed order."""

    id: UUID
    order_number: str
    employee_id: UUID
    principal: Decimal
    customer_class: CustomerClass
    term_months: int
    status: OrderStatus
    rate_policy_version: int
    monthly_rate: Decimal
    currency: str
    workflow_name: str | None = None
    credit_score: int | None = None
    cancel_reason: str | None = None
    on_hold: bool = False
    hold_reason: str | None = None
    approved_at: datetime | None = None
    cancelled_at: datetime | None = None
    closed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 1
