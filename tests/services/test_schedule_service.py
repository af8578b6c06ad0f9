"""
Tests for ScheduleService -- materializing an approved order's schedule.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from epp_kernel.domain.calendar import CutoffCalendar
from epp_kernel.domain.installment import InstallmentStatus
from epp_kernel.domain.order import OrderStatus
from epp_kernel.domain.schedule import RemainderPolicy
from epp_kernel.exceptions import (
    InvalidOrderStateError,
    OrderNotFoundError,
    ScheduleAlreadyExistsError,
)
from epp_kernel.services.schedule_service import ScheduleService

from tests.conftest import EMPLOYEE_ID


@pytest.fixture
def approved_order(order_service):
    def _make(principal="10000", customer_class="employee", term=6):
        order = order_service.create_order(EMPLOYEE_ID, Decimal(principal), customer_class, term)
        order_service.transition(order_service.lock(order.id), OrderStatus.APPROVED)
        return order

    return _make


class TestCreateSchedule:
    def test_worked_example_persisted(self, schedule_service, approved_order):
        order = approved_order()

        result = schedule_service.create_schedule(order.id)

        assert result.order.status == OrderStatus.SCHEDULED
        assert result.totals.total_payable == Decimal("12100.00")
        assert [i.amount for i in result.installments] == (
            [Decimal("2016.66")] * 5 + [Decimal("2016.70")]
        )
        assert all(i.status == InstallmentStatus.SCHEDULED for i in result.installments)
        assert result.installments[0].scheduled_date == date(2024, 1, 30)
        assert result.loan_entry.debit == Decimal("12100.00")

    def test_loan_equals_installment_total(self, schedule_service, approved_order):
        order = approved_order("33333.33", term=24)

        result = schedule_service.create_schedule(order.id)

        assert sum(i.amount for i in result.installments) == result.loan_entry.debit
        assert result.loan_entry.debit == result.totals.total_payable

    def test_uses_snapshotted_rate(self, schedule_service, approved_order):
        order = approved_order(customer_class="retailer")

        result = schedule_service.create_schedule(order.id)

        assert result.totals.monthly_rate == Decimal("0.02")
        assert result.totals.total_interest == Decimal("1200.00")

    def test_explicit_start_date(self, schedule_service, approved_order):
        order = approved_order()

        result = schedule_service.create_schedule(order.id, as_of=date(2024, 3, 5))

        assert result.installments[0].cut_off_date == date(2024, 3, 30)

    def test_second_schedule_rejected(self, schedule_service, approved_order):
        order = approved_order()
        schedule_service.create_schedule(order.id)

        # The order left APPROVED, so the state check fires first.
        with pytest.raises(InvalidOrderStateError):
            schedule_service.create_schedule(order.id)

    def test_existing_installments_rejected(
        self, session, schedule_service, approved_order, order_service,
    ):
        order = approved_order()
        schedule_service.create_schedule(order.id)
        model = order_service.load(order.id)
        # Force the status back to exercise the installment guard.
        model.status = OrderStatus.APPROVED.value
        session.flush()

        with pytest.raises(ScheduleAlreadyExistsError):
            schedule_service.create_schedule(order.id)

    def test_pending_order_cannot_be_scheduled(self, schedule_service, order_service):
        order = order_service.create_order(EMPLOYEE_ID, "1000", "employee", 3)

        with pytest.raises(InvalidOrderStateError):
            schedule_service.create_schedule(order.id)

    def test_unknown_order(self, schedule_service):
        with pytest.raises(OrderNotFoundError):
            schedule_service.create_schedule(uuid4())

    def test_schedule_creation_is_logged(self, schedule_service, approved_order, captured_logs):
        order = approved_order()
        schedule_service.create_schedule(order.id)

        (record,) = [r for r in captured_logs() if r["message"] == "schedule_created"]
        assert record["installments"] == 6
        assert record["total_payable"] == "12100.00"
        assert record["first_due"] == "2024-01-30"


class TestConfiguredVariants:
    def test_semi_monthly_calendar_with_lag_and_distribution(
        self, session, order_service, installment_service, ledger_service,
        rate_policies, deterministic_clock, approved_order,
    ):
        service = ScheduleService(
            session,
            order_service,
            installment_service,
            ledger_service,
            rate_policies,
            CutoffCalendar.semi_monthly(15, 30),
            deterministic_clock,
            disbursement_lag_days=2,
            remainder_policy=RemainderPolicy.DISTRIBUTE,
        )
        order = approved_order()

        result = service.create_schedule(order.id)

        assert [i.cut_off_date for i in result.installments[:3]] == [
            date(2024, 1, 15), date(2024, 1, 30), date(2024, 2, 15),
        ]
        assert result.installments[0].scheduled_date == date(2024, 1, 17)
        assert result.installments[0].amount == Decimal("2016.67")


class TestPreviewSchedule:
    def test_preview_persists_nothing(self, schedule_service, ledger_service):
        preview = schedule_service.preview_schedule("10000", "employee", 6)

        assert preview.totals.total_payable == Decimal("12100.00")
        assert len(preview.drafts) == 6
        assert ledger_service.get_ledger(EMPLOYEE_ID).lines == ()
