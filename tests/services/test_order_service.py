"""
Tests for OrderService -- order creation, rate snapshot, transitions,
holds and optimistic locking.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import update

from epp_kernel.domain.order import OrderStatus
from epp_kernel.domain.rate_policy import CustomerClass
from epp_kernel.exceptions import (
    InvalidOrderTransitionError,
    OptimisticLockError,
    OrderNotFoundError,
    ValidationError,
)
from epp_kernel.models.order import OrderModel

from tests.conftest import EMPLOYEE_ID


class TestCreateOrder:
    def test_new_order_is_pending_approval_with_rate_snapshot(self, order_service):
        order = order_service.create_order(EMPLOYEE_ID, "10000", "employee", 6)

        assert order.status == OrderStatus.PENDING_APPROVAL
        assert order.customer_class == CustomerClass.EMPLOYEE
        assert order.rate_policy_version == 1
        assert order.monthly_rate == Decimal("0.035")
        assert order.currency == "PHP"
        assert order.version == 1

    def test_term_tier_is_snapshotted(self, order_service):
        order = order_service.create_order(EMPLOYEE_ID, "10000", "retailer", 6)
        assert order.monthly_rate == Decimal("0.02")

    def test_generated_order_number_is_unique(self, order_service):
        first = order_service.create_order(EMPLOYEE_ID, "100", "employee", 3)
        second = order_service.create_order(EMPLOYEE_ID, "100", "employee", 3)
        assert first.order_number != second.order_number
        assert first.order_number.startswith("EPP-20240101-")

    def test_explicit_order_number(self, order_service):
        order = order_service.create_order(
            EMPLOYEE_ID, "100", "employee", 3, order_number="SO-0001",
        )
        assert order.order_number == "SO-0001"

    @pytest.mark.parametrize("principal", ["0", "-1"])
    def test_non_positive_principal(self, order_service, principal):
        with pytest.raises(ValidationError) as exc_info:
            order_service.create_order(EMPLOYEE_ID, principal, "employee", 6)
        assert exc_info.value.field == "principal"

    def test_disabled_term(self, order_service):
        with pytest.raises(ValidationError) as exc_info:
            order_service.create_order(EMPLOYEE_ID, "1000", "employee", 7)
        assert exc_info.value.field == "term_months"

    def test_loan_to_income_ceiling(self, order_service):
        # 12100 / 6 = 2016.66 per month; 30 % of 5000 is 1500.
        with pytest.raises(ValidationError) as exc_info:
            order_service.create_order(
                EMPLOYEE_ID, "10000", "employee", 6, monthly_income=Decimal("5000"),
            )
        assert exc_info.value.field == "monthly_income"

    def test_within_loan_to_income(self, order_service):
        order = order_service.create_order(
            EMPLOYEE_ID, "10000", "employee", 6, monthly_income=Decimal("10000"),
        )
        assert order.status == OrderStatus.PENDING_APPROVAL


class TestTransitions:
    def test_legal_transition_bumps_version(self, order_service):
        order = order_service.create_order(EMPLOYEE_ID, "1000", "employee", 3)
        model = order_service.lock(order.id)

        order_service.transition(model, OrderStatus.APPROVED)

        fresh = order_service.get_order(order.id)
        assert fresh.status == OrderStatus.APPROVED
        assert fresh.approved_at is not None
        assert fresh.version == 2

    def test_cancellation_records_reason(self, order_service):
        order = order_service.create_order(EMPLOYEE_ID, "1000", "employee", 3)
        model = order_service.lock(order.id)

        order_service.transition(model, OrderStatus.CANCELLED, reason="Rejected at level 1")

        fresh = order_service.get_order(order.id)
        assert fresh.cancel_reason == "Rejected at level 1"
        assert fresh.cancelled_at is not None

    def test_illegal_transition(self, order_service):
        order = order_service.create_order(EMPLOYEE_ID, "1000", "employee", 3)
        model = order_service.lock(order.id)

        with pytest.raises(InvalidOrderTransitionError):
            order_service.transition(model, OrderStatus.SCHEDULED)

    def test_cancelled_is_terminal(self, order_service):
        order = order_service.create_order(EMPLOYEE_ID, "1000", "employee", 3)
        model = order_service.lock(order.id)
        order_service.transition(model, OrderStatus.CANCELLED)

        with pytest.raises(InvalidOrderTransitionError):
            order_service.transition(model, OrderStatus.APPROVED)

    def test_status_change_is_logged(self, order_service, captured_logs):
        order = order_service.create_order(EMPLOYEE_ID, "1000", "employee", 3)
        order_service.transition(order_service.lock(order.id), OrderStatus.APPROVED)

        changes = [r for r in captured_logs() if r["message"] == "order_status_changed"]
        assert changes[-1]["from_status"] == "PENDING_APPROVAL"
        assert changes[-1]["to_status"] == "APPROVED"
        assert changes[-1]["logger"] == "epp_kernel.services.order"


class TestOptimisticLocking:
    def test_stale_write_raises(self, session, order_service):
        order = order_service.create_order(EMPLOYEE_ID, "1000", "employee", 3)
        model = order_service.load(order.id)

        # Another writer moved the row on.
        session.execute(
            update(OrderModel.__table__)
            .where(OrderModel.__table__.c.id == str(order.id))
            .values(version=7)
        )

        with pytest.raises(OptimisticLockError):
            order_service.touch(model)


class TestHolds:
    def test_hold_and_release(self, order_service):
        order = order_service.create_order(EMPLOYEE_ID, "1000", "employee", 3)

        held = order_service.place_on_hold(order.id, "ledger mismatch")
        assert held.on_hold
        assert held.hold_reason == "ledger mismatch"

        released = order_service.release_hold(order.id, uuid4())
        assert not released.on_hold
        assert released.hold_reason is None

    def test_unknown_order(self, order_service):
        with pytest.raises(OrderNotFoundError):
            order_service.place_on_hold(uuid4(), "x")
