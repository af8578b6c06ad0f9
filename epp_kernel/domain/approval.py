"""
Approval domain types (``epp_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the sequential, role-bound approval chain that gates
financing: workflow templates, per-order level records, the per-level state
machine and the derivation of the order-aggregate status.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects and functions.  ZERO I/O.

Invariants enforced
-------------------
* Per-level lifecycle: PENDING -> APPROVED | REJECTED.  Both outcomes are
  terminal (``APPROVAL_LEVEL_TRANSITIONS``).
* Strict ordering: a level is *active* only when every lower level is
  APPROVED.  Auto-approval never exempts a lower level.
* Aggregate status is derived, never stored independently: any REJECTED
  level -> CANCELLED; every required level APPROVED -> APPROVED; otherwise
  PENDING_APPROVAL.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Iterable, Mapping, Protocol
from uuid import UUID

from epp_kernel.domain.clock import ensure_utc
from epp_kernel.domain.order import OrderStatus
from epp_kernel.exceptions import ConfigurationError

# Actor recorded on levels resolved by the engine itself.
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000000")

# Resolution reasons
REASON_MANUAL = "MANUAL"
REASON_AUTO_APPROVED = "AUTO_APPROVED_UNDER_THRESHOLD"
REASON_TIMEOUT = "APPROVAL_TIMEOUT"
REASON_TIMEOUT_AUTO_APPROVED = "APPROVAL_TIMEOUT_AUTO_APPROVED"


class ApproverRole(str, Enum):
    MANAGER = "MANAGER"
    HR = "HR"
    FINANCE = "FINANCE"
    DEPARTMENT_HEAD = "DEPARTMENT_HEAD"
    ADMIN = "ADMIN"


class ApprovalLevelStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


APPROVAL_LEVEL_TRANSITIONS: dict[ApprovalLevelStatus, frozenset[ApprovalLevelStatus]] = {
    ApprovalLevelStatus.PENDING: frozenset({
        ApprovalLevelStatus.APPROVED,
        ApprovalLevelStatus.REJECTED,
    }),
    ApprovalLevelStatus.APPROVED: frozenset(),
    ApprovalLevelStatus.REJECTED: frozenset(),
}


class ApprovalDecision(str, Enum):
    """Decision an approver makes on an active level."""

    APPROVE = "APPROVE"
    REJECT = "REJECT"

    @property
    def resulting_status(self) -> ApprovalLevelStatus:
        if self is ApprovalDecision.APPROVE:
            return ApprovalLevelStatus.APPROVED
        return ApprovalLevelStatus.REJECTED


class EscalationPolicy(str, Enum):
    """What the timeout sweep does with an overdue level."""

    AUTO_REJECT = "AUTO_REJECT"
    AUTO_APPROVE = "AUTO_APPROVE"
    FLAG_ONLY = "FLAG_ONLY"


class TimeoutAction(str, Enum):
    REJECTED = "REJECTED"
    APPROVED = "APPROVED"
    FLAGGED = "FLAGGED"


# =========================================================================
# Templates
# =========================================================================


@dataclass(frozen=True)
class ApprovalLevelTemplate:
    """One stage of a workflow template. Levels are numbered by position."""

    approver_role: str
    is_required: bool = True
    auto_approve_under: Decimal | None = None
    timeout_days: int | None = None


@dataclass(frozen=True)
class ApprovalWorkflow:
    """A named, ordered approval chain applicable to an order-amount band."""

    name: str
    levels: tuple[ApprovalLevelTemplate, ...]
    min_order_amount: Decimal | None = None
    max_order_amount: Decimal | None = None
    requires_installment: bool = True

    def __post_init__(self) -> None:
        if not self.levels:
            raise ConfigurationError(
                f"Approval workflow {self.name!r} has no levels", key="levels",
            )

    def matches(self, amount: Decimal) -> bool:
        if self.min_order_amount is not None and amount < self.min_order_amount:
            return False
        if self.max_order_amount is not None and amount > self.max_order_amount:
            return False
        return True


def select_workflow(
    workflows: Iterable[ApprovalWorkflow], amount: Decimal,
) -> ApprovalWorkflow:
    """First workflow whose amount band contains ``amount``."""
    for workflow in workflows:
        if workflow.matches(amount):
            return workflow
    raise ConfigurationError(f"No approval workflow covers order amount {amount}")


# =========================================================================
# Instance records
# =========================================================================


@dataclass(frozen=True)
class OrderApproval:
    """One materialized approval level of one order."""

    id: UUID
    order_id: UUID
    approval_level: int
    approver_role: str
    is_required: bool
    status: ApprovalLevelStatus
    created_at: datetime
    auto_approve_under: Decimal | None = None
    timeout_days: int | None = None
    approver_id: UUID | None = None
    resolution_reason: str | None = None
    comment: str = ""
    escalated_at: datetime | None = None
    resolved_at: datetime | None = None

    @property
    def is_resolved(self) -> bool:
        return self.status != ApprovalLevelStatus.PENDING

    def timeout_deadline(self) -> datetime | None:
        if self.timeout_days is None:
            return None
        return ensure_utc(self.created_at) + timedelta(days=self.timeout_days)


@dataclass(frozen=True)
class ApprovalOutcome:
    """Order-aggregate view after a chain mutation."""

    order_id: UUID
    order_status: OrderStatus
    levels: tuple[OrderApproval, ...]

    @property
    def fully_approved(self) -> bool:
        return self.order_status == OrderStatus.APPROVED


@dataclass(frozen=True)
class TimeoutOutcome:
    order_id: UUID
    approval_id: UUID
    approval_level: int
    action: TimeoutAction
    order_status: OrderStatus


# =========================================================================
# Pure chain logic
# =========================================================================


def derive_order_approval_status(levels: Iterable[OrderApproval]) -> OrderStatus:
    ordered = sorted(levels, key=lambda lv: lv.approval_level)
    if any(lv.status == ApprovalLevelStatus.REJECTED for lv in ordered):
        return OrderStatus.CANCELLED
    if all(
        lv.status == ApprovalLevelStatus.APPROVED
        for lv in ordered
        if lv.is_required
    ):
        return OrderStatus.APPROVED
    return OrderStatus.PENDING_APPROVAL


def first_blocking_level(levels: Iterable[OrderApproval], level: int) -> int | None:
    """Lowest level below ``level`` that is not APPROVED, if any."""
    for lv in sorted(levels, key=lambda x: x.approval_level):
        if lv.approval_level >= level:
            break
        if lv.status != ApprovalLevelStatus.APPROVED:
            return lv.approval_level
    return None


def is_timed_out(level: OrderApproval, as_of: datetime) -> bool:
    deadline = level.timeout_deadline()
    if deadline is None or level.is_resolved:
        return False
    return ensure_utc(as_of) >= deadline


# =========================================================================
# ActorDirectory Protocol
# =========================================================================


class ActorDirectory(Protocol):
    """Pluggable lookup of an actor's approver roles."""

    def get_actor_roles(self, actor_id: UUID) -> tuple[str, ...]:
        ...

    def has_role(self, actor_id: UUID, role: str) -> bool:
        ...


class StaticActorDirectory:
    """In-memory ActorDirectory backed by a role mapping."""

    def __init__(self, roles: Mapping[UUID, Iterable[str]] | None = None):
        self._roles: dict[UUID, frozenset[str]] = {
            actor: frozenset(r) for actor, r in (roles or {}).items()
        }

    def grant(self, actor_id: UUID, *roles: str) -> None:
        self._roles[actor_id] = self._roles.get(actor_id, frozenset()) | frozenset(roles)

    def get_actor_roles(self, actor_id: UUID) -> tuple[str, ...]:
        return tuple(sorted(self._roles.get(actor_id, ())))

    def has_role(self, actor_id: UUID, role: str) -> bool:
        return role in self._roles.get(actor_id, frozenset())
