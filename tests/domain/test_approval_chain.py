"""
Tests for the pure approval-chain logic in epp_kernel.domain.approval.

Aggregate derivation, the strict-ordering check, timeout deadlines and
workflow selection by order amount.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from epp_kernel.domain.approval import (
    ApprovalLevelStatus,
    ApprovalLevelTemplate,
    ApprovalWorkflow,
    OrderApproval,
    StaticActorDirectory,
    derive_order_approval_status,
    first_blocking_level,
    is_timed_out,
    select_workflow,
)
from epp_kernel.domain.order import OrderStatus
from epp_kernel.exceptions import ConfigurationError

CREATED = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
ORDER_ID = uuid4()


def level(number, status=ApprovalLevelStatus.PENDING, required=True, timeout_days=None):
    return OrderApproval(
        id=uuid4(),
        order_id=ORDER_ID,
        approval_level=number,
        approver_role="MANAGER",
        is_required=required,
        status=status,
        created_at=CREATED,
        timeout_days=timeout_days,
    )


A = ApprovalLevelStatus.APPROVED
P = ApprovalLevelStatus.PENDING
R = ApprovalLevelStatus.REJECTED


class TestDeriveOrderApprovalStatus:
    def test_all_approved(self):
        assert derive_order_approval_status([level(1, A), level(2, A)]) == OrderStatus.APPROVED

    def test_any_pending(self):
        assert (
            derive_order_approval_status([level(1, A), level(2, P)])
            == OrderStatus.PENDING_APPROVAL
        )

    def test_rejection_wins_over_pending(self):
        levels = [level(1, A), level(2, R), level(3, P)]
        assert derive_order_approval_status(levels) == OrderStatus.CANCELLED

    def test_optional_level_does_not_hold_aggregate(self):
        levels = [level(1, A), level(2, P, required=False)]
        assert derive_order_approval_status(levels) == OrderStatus.APPROVED


class TestFirstBlockingLevel:
    def test_lowest_unapproved_level_blocks(self):
        levels = [level(1, A), level(2, P), level(3, A)]
        assert first_blocking_level(levels, 3) == 2

    def test_auto_approved_level_still_waits_for_lower(self):
        levels = [level(1, P), level(2, A)]
        assert first_blocking_level(levels, 2) == 1

    def test_first_level_never_blocked(self):
        assert first_blocking_level([level(1, P), level(2, P)], 1) is None


class TestTimeouts:
    def test_not_timed_out_before_deadline(self):
        lv = level(1, timeout_days=3)
        assert not is_timed_out(lv, CREATED + timedelta(days=3) - timedelta(seconds=1))

    def test_timed_out_at_deadline(self):
        assert is_timed_out(level(1, timeout_days=3), CREATED + timedelta(days=3))

    def test_no_timeout_configured(self):
        assert not is_timed_out(level(1), CREATED + timedelta(days=365))

    def test_resolved_level_never_times_out(self):
        assert not is_timed_out(level(1, A, timeout_days=1), CREATED + timedelta(days=9))

    def test_naive_as_of_is_treated_as_utc(self):
        naive = (CREATED + timedelta(days=3)).replace(tzinfo=None)
        assert is_timed_out(level(1, timeout_days=3), naive)


class TestWorkflowSelection:
    STANDARD = ApprovalWorkflow(
        name="standard",
        levels=(ApprovalLevelTemplate("MANAGER"),),
        min_order_amount=Decimal("0"),
        max_order_amount=Decimal("50000"),
    )
    HIGH = ApprovalWorkflow(
        name="high_value",
        levels=(ApprovalLevelTemplate("MANAGER"), ApprovalLevelTemplate("FINANCE")),
        min_order_amount=Decimal("50000.01"),
    )

    def test_band_boundaries(self):
        workflows = (self.STANDARD, self.HIGH)
        assert select_workflow(workflows, Decimal("50000")).name == "standard"
        assert select_workflow(workflows, Decimal("50000.01")).name == "high_value"

    def test_no_matching_band(self):
        with pytest.raises(ConfigurationError):
            select_workflow((self.STANDARD,), Decimal("75000"))

    def test_empty_workflow_rejected(self):
        with pytest.raises(ConfigurationError):
            ApprovalWorkflow(name="empty", levels=())


class TestStaticActorDirectory:
    def test_grant_accumulates_roles(self):
        actor = uuid4()
        directory = StaticActorDirectory()
        directory.grant(actor, "MANAGER")
        directory.grant(actor, "HR")
        assert directory.get_actor_roles(actor) == ("HR", "MANAGER")
        assert directory.has_role(actor, "HR")
        assert not directory.has_role(uuid4(), "HR")
