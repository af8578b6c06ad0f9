"""
End-to-end financing flows through FinancingOrchestrator: checkout,
approvals, schedule, monthly payroll batches, refunds and reconciliation.
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from epp_kernel.domain.approval import (
    REASON_AUTO_APPROVED,
    ApprovalDecision,
    ApprovalLevelStatus,
    ApprovalLevelTemplate,
    ApprovalWorkflow,
    EscalationPolicy,
)
from epp_kernel.domain.installment import InstallmentStatus
from epp_kernel.domain.ledger import LedgerEventType
from epp_kernel.domain.order import OrderStatus
from epp_kernel.domain.rate_policy import CreditDecision
from epp_kernel.exceptions import InvalidInstallmentTransitionError, InvalidOrderStateError
from epp_services.financing_orchestrator import FinancingOrchestrator

from tests.conftest import EMPLOYEE_ID, FINANCE_ID, HR_ID, MANAGER_ID

MONTH_ENDS = (
    date(2024, 1, 31),
    date(2024, 2, 29),
    date(2024, 3, 31),
    date(2024, 4, 30),
    date(2024, 5, 31),
    date(2024, 6, 30),
)


def run_all_payrolls(financing):
    return [
        financing.run_batch(f"PAY-{cutoff:%Y-%m}", cutoff) for cutoff in MONTH_ENDS
    ]


class TestHappyPath:
    def test_checkout_to_closed_order(self, financing):
        submission = financing.submit_order(
            EMPLOYEE_ID, "10000", "employee", 6,
            credit_score=720, monthly_income="50000",
        )
        assert submission.credit_decision == CreditDecision.AUTO_APPROVE
        assert submission.order.status == OrderStatus.PENDING_APPROVAL
        assert submission.schedule is None
        manager, hr = submission.approvals

        first = financing.resolve_level(manager.id, ApprovalDecision.APPROVE, MANAGER_ID)
        assert first.schedule is None
        final = financing.resolve_level(hr.id, ApprovalDecision.APPROVE, HR_ID)
        assert final.outcome.fully_approved
        assert final.schedule.totals.total_payable == Decimal("12100.00")

        runs = run_all_payrolls(financing)
        assert sum(r.settled for r in runs) == 6

        order_id = submission.order.id
        summary = financing.get_order_summary(order_id)
        assert summary.paid_count == 6
        assert summary.remaining_amount == Decimal("0.00")
        assert financing.orders.get_order(order_id).status == OrderStatus.CLOSED

        view = financing.get_ledger(EMPLOYEE_ID)
        assert view.summary.total_entries == 7
        assert view.summary.total_debit == Decimal("12100.00")
        assert view.summary.total_credit == Decimal("12100.00")
        assert view.summary.outstanding_balance == Decimal("0.00")

    def test_refund_reopens_and_stays_reconciled(self, financing, scheduled_order):
        run_all_payrolls(financing)
        order_id = scheduled_order.order.id
        last = scheduled_order.installments[-1]

        refunded = financing.refund_installment(last.id, "Returned item", reference_no="RMA-1")

        assert refunded.status == InstallmentStatus.REFUNDED
        assert financing.orders.get_order(order_id).status == OrderStatus.SETTLING
        entries = financing.get_ledger(EMPLOYEE_ID, order_id).entries
        assert entries[-1].event_type == LedgerEventType.REVERSAL
        assert entries[-1].balance == Decimal("2016.70")
        assert financing.reconciliation.reconcile_order(order_id).balanced

    def test_reconcile_all_after_payrolls(self, financing, scheduled_order):
        run_all_payrolls(financing)
        outcomes = financing.reconciliation.reconcile_all()
        assert [o.order_id for o in outcomes] == [scheduled_order.order.id]
        assert outcomes[0].balanced

    def test_preview_matches_materialized_schedule(self, financing, scheduled_order):
        preview = financing.preview_schedule("10000", "employee", 6, date(2024, 1, 1))
        assert [d.amount for d in preview.drafts] == [
            i.amount for i in scheduled_order.installments
        ]
        assert preview.totals == scheduled_order.totals


class TestRejections:
    def test_low_credit_score_cancels_without_chain(self, financing):
        submission = financing.submit_order(
            EMPLOYEE_ID, "10000", "employee", 6, credit_score=450,
        )

        assert submission.credit_decision == CreditDecision.AUTO_REJECT
        assert submission.approvals == ()
        assert submission.order.status == OrderStatus.CANCELLED
        assert "450" in submission.order.cancel_reason

    def test_high_value_rejected_at_second_level(self, financing):
        submission = financing.submit_order(EMPLOYEE_ID, "60000", "employee", 12)
        manager, hr, finance = submission.approvals
        assert submission.order.workflow_name == "high_value"

        financing.resolve_level(manager.id, ApprovalDecision.APPROVE, MANAGER_ID)
        result = financing.resolve_level(hr.id, ApprovalDecision.REJECT, HR_ID, "over budget")

        assert result.schedule is None
        assert result.outcome.order_status == OrderStatus.CANCELLED
        assert result.outcome.levels[2].status == ApprovalLevelStatus.PENDING
        with pytest.raises(InvalidOrderStateError):
            financing.resolve_level(finance.id, ApprovalDecision.APPROVE, FINANCE_ID)

    def test_timeout_sweep_cancels_stale_order(self, financing, deterministic_clock):
        submission = financing.submit_order(EMPLOYEE_ID, "10000", "employee", 6)
        deterministic_clock.advance_days(3)

        (outcome,) = financing.sweep_timeouts()

        assert outcome.order_id == submission.order.id
        assert financing.orders.get_order(submission.order.id).status == OrderStatus.CANCELLED


class TestAutoApproval:
    def test_single_auto_level_schedules_immediately(self, financing):
        order = financing.orders.create_order(EMPLOYEE_ID, Decimal("3000"), "employee", 3)
        instant = ApprovalWorkflow(
            name="instant",
            levels=(ApprovalLevelTemplate("MANAGER", auto_approve_under=Decimal("5000")),),
        )

        (level,) = financing.create_approval_chain(order.id, instant)

        assert level.status == ApprovalLevelStatus.APPROVED
        assert level.resolution_reason == REASON_AUTO_APPROVED
        assert financing.orders.get_order(order.id).status == OrderStatus.SCHEDULED
        summary = financing.get_order_summary(order.id)
        assert summary.total_installments == 3


class TestTimeoutEscalation:
    @pytest.fixture
    def auto_approving(self, session, epp_config, actor_directory, gateway, deterministic_clock):
        config = replace(
            epp_config,
            approval=replace(epp_config.approval, escalation_policy=EscalationPolicy.AUTO_APPROVE),
        )
        return FinancingOrchestrator(
            session, config, actor_directory, gateway, deterministic_clock,
        )

    def test_sweep_that_approves_generates_schedule(self, auto_approving, deterministic_clock):
        submission = auto_approving.submit_order(EMPLOYEE_ID, "10000", "employee", 6)
        deterministic_clock.advance_days(30)

        outcomes = auto_approving.sweep_timeouts()

        assert [o.approval_level for o in outcomes] == [1, 2]
        assert outcomes[-1].order_status == OrderStatus.APPROVED
        order_id = submission.order.id
        assert auto_approving.orders.get_order(order_id).status == OrderStatus.SCHEDULED
        assert auto_approving.get_order_summary(order_id).total_installments == 6
        assert auto_approving.ledger.get_balance(order_id) == Decimal("12100.00")

    def test_partial_escalation_does_not_schedule(self, auto_approving, deterministic_clock):
        submission = auto_approving.submit_order(EMPLOYEE_ID, "10000", "employee", 6)
        deterministic_clock.advance_days(4)

        (outcome,) = auto_approving.sweep_timeouts()

        assert outcome.order_status == OrderStatus.PENDING_APPROVAL
        assert auto_approving.get_order_summary(submission.order.id).total_installments == 0


class TestManualPayment:
    def test_pay_scheduled_installment(self, financing, scheduled_order):
        first = scheduled_order.installments[0]

        paid = financing.pay_installment(first.id, deduction_reference="OR-2024-0001")

        assert paid.status == InstallmentStatus.DEDUCTED
        assert paid.payroll_batch_id == "manual"
        assert paid.deduction_reference == "OR-2024-0001"
        order_id = scheduled_order.order.id
        assert financing.ledger.get_balance(order_id) == Decimal("10083.34")
        assert financing.orders.get_order(order_id).status == OrderStatus.SETTLING

    def test_pay_failed_installment(self, financing, scheduled_order, gateway):
        first = scheduled_order.installments[0]
        gateway.reject(first.id, "ON_LEAVE")
        financing.run_batch("PAY-2024-01", MONTH_ENDS[0])

        paid = financing.pay_installment(first.id, payroll_batch_id="PAY-2024-01")

        assert paid.status == InstallmentStatus.DEDUCTED
        assert paid.retry_count == 1
        assert paid.last_failure_reason is None
        assert paid.deduction_reference == f"PAY-2024-01:{first.id}"
        next_run = financing.run_batch("PAY-2024-02", MONTH_ENDS[1])
        assert first.id not in {i.installment_id for i in next_run.item_results}

    def test_last_payment_closes_order(self, financing, scheduled_order):
        for installment in scheduled_order.installments:
            financing.pay_installment(installment.id)

        order_id = scheduled_order.order.id
        assert financing.orders.get_order(order_id).status == OrderStatus.CLOSED
        assert financing.ledger.get_balance(order_id) == Decimal("0.00")

    def test_paid_installment_cannot_be_paid_again(self, financing, scheduled_order):
        first = scheduled_order.installments[0]
        financing.pay_installment(first.id)

        with pytest.raises(InvalidInstallmentTransitionError):
            financing.pay_installment(first.id)
