"""
Pure domain layer.

Value objects, state machines and calculations with NO dependencies on
the ORM, the database, the wall clock or I/O.
"""

from epp_kernel.domain.approval import (
    ApprovalDecision,
    ApprovalLevelStatus,
    ApprovalLevelTemplate,
    ApprovalOutcome,
    ApprovalWorkflow,
    ApproverRole,
    EscalationPolicy,
    OrderApproval,
    StaticActorDirectory,
    TimeoutOutcome,
)
from epp_kernel.domain.calendar import CutoffCalendar, CutoffFrequency
from epp_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from epp_kernel.domain.installment import Installment, InstallmentStatus
from epp_kernel.domain.ledger import LedgerEntry, LedgerEventType, LedgerView
from epp_kernel.domain.order import Order, OrderStatus
from epp_kernel.domain.rate_policy import (
    CreditDecision,
    CustomerClass,
    RatePolicy,
    RatePolicyRegistry,
)
from epp_kernel.domain.schedule import RemainderPolicy, generate_schedule

__all__ = [
    # Approval
    "ApprovalDecision",
    "ApprovalLevelStatus",
    "ApprovalLevelTemplate",
    "ApprovalOutcome",
    "ApprovalWorkflow",
    "ApproverRole",
    "EscalationPolicy",
    "OrderApproval",
    "StaticActorDirectory",
    "TimeoutOutcome",
    # Time
    "Clock",
    "CutoffCalendar",
    "CutoffFrequency",
    "DeterministicClock",
    "SystemClock",
    # Orders and installments
    "Installment",
    "InstallmentStatus",
    "Order",
    "OrderStatus",
    "LedgerEntry",
    "LedgerEventType",
    "LedgerView",
    # Pricing
    "CreditDecision",
    "CustomerClass",
    "RatePolicy",
    "RatePolicyRegistry",
    "RemainderPolicy",
    "generate_schedule",
]
