"""
Payroll deduction batch: settlement, reruns, retries, holds.

Every test drives the real InstallmentDeductionTask through the
BatchOrchestrator against a StaticDeductionGateway.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import update

from epp_batch.domain.types import BatchItemStatus, ItemOutcome, PayrollBatchStatus
from epp_batch.gateway import StaticDeductionGateway
from epp_kernel.domain.alert import AlertType
from epp_kernel.domain.installment import InstallmentStatus
from epp_kernel.domain.order import OrderStatus
from epp_kernel.models.order import OrderModel

CUTOFFS = (
    date(2024, 1, 31),
    date(2024, 2, 29),
    date(2024, 3, 31),
    date(2024, 4, 30),
    date(2024, 5, 31),
    date(2024, 6, 30),
)


def run_month(batch_orchestrator, month: int):
    return batch_orchestrator.run_payroll(f"PAY-2024-{month:02d}", CUTOFFS[month - 1])


class UnreachableGateway(StaticDeductionGateway):
    """Raises a transport error for the listed installments."""

    def __init__(self):
        super().__init__()
        self.unreachable: set = set()

    def deduct(self, installment, batch_id):
        if installment.id in self.unreachable:
            self.calls.append((installment.id, batch_id))
            raise ConnectionError("payroll host unreachable")
        return super().deduct(installment, batch_id)


class TestSettlement:
    def test_first_cutoff_settles_first_installment(
        self, batch_orchestrator, scheduled_order, installment_service, ledger_service,
    ):
        order_id = scheduled_order.order.id
        first = scheduled_order.installments[0]

        run = run_month(batch_orchestrator, 1)

        assert run.status == PayrollBatchStatus.COMPLETED
        assert run.settled == 1
        (item,) = run.item_results
        assert item.outcome == ItemOutcome.DEDUCTED
        assert item.deduction_reference.startswith("PAY-2024-01-01-")
        settled = installment_service.get_installment(first.id)
        assert settled.status == InstallmentStatus.DEDUCTED
        assert settled.payroll_batch_id == "PAY-2024-01"
        assert ledger_service.get_balance(order_id) == Decimal("10083.34")

    def test_first_deduction_moves_order_to_settling(
        self, batch_orchestrator, scheduled_order, order_service,
    ):
        run_month(batch_orchestrator, 1)
        order = order_service.get_order(scheduled_order.order.id)
        assert order.status == OrderStatus.SETTLING

    def test_all_cutoffs_close_the_order(
        self, batch_orchestrator, scheduled_order, order_service, ledger_service,
    ):
        order_id = scheduled_order.order.id

        runs = [run_month(batch_orchestrator, m) for m in range(1, 7)]

        assert [r.settled for r in runs] == [1, 1, 1, 1, 1, 1]
        assert ledger_service.get_balance(order_id) == Decimal("0.00")
        assert order_service.get_order(order_id).status == OrderStatus.CLOSED
        assert ledger_service.reconcile(order_id).balanced

    def test_late_batch_catches_up_on_missed_cutoffs(self, batch_orchestrator, scheduled_order):
        run = batch_orchestrator.run_payroll("PAY-CATCHUP", CUTOFFS[2])
        assert run.settled == 3
        numbers = [i.item_key for i in run.item_results]
        assert numbers == [str(i.id) for i in scheduled_order.installments[:3]]


class TestRerun:
    def test_rerun_is_a_no_op(
        self, batch_orchestrator, scheduled_order, gateway, ledger_service,
    ):
        run_month(batch_orchestrator, 1)

        rerun = run_month(batch_orchestrator, 1)

        assert rerun.run_number == 2
        assert rerun.settled == 0
        assert rerun.total_items == 0
        assert len(gateway.calls) == 1
        payments = [
            e for e in ledger_service.get_entries(scheduled_order.order.id)
            if e.event_type.value == "PAYMENT"
        ]
        assert len(payments) == 1


class TestRetries:
    def test_rejection_marks_installment_failed(
        self, batch_orchestrator, scheduled_order, gateway, installment_service,
    ):
        first = scheduled_order.installments[0]
        gateway.reject(first.id, "INSUFFICIENT_PAY")

        run = run_month(batch_orchestrator, 1)

        assert run.status == PayrollBatchStatus.FAILED
        assert run.failed == 1
        (item,) = run.item_results
        assert item.status == BatchItemStatus.FAILED
        assert item.error_code == "DEDUCTION_REJECTED"
        failed = installment_service.get_installment(first.id)
        assert failed.status == InstallmentStatus.FAILED
        assert failed.retry_count == 1
        assert failed.last_failure_reason == "INSUFFICIENT_PAY"

    def test_same_batch_does_not_retry_its_own_failure(
        self, batch_orchestrator, scheduled_order, gateway, installment_service,
    ):
        first = scheduled_order.installments[0]
        gateway.reject(first.id)
        run_month(batch_orchestrator, 1)
        gateway.accept(first.id)

        rerun = run_month(batch_orchestrator, 1)

        assert rerun.total_items == 0
        assert installment_service.get_installment(first.id).status == InstallmentStatus.FAILED

    def test_next_batch_retries_and_settles(
        self, batch_orchestrator, scheduled_order, gateway, installment_service,
    ):
        first = scheduled_order.installments[0]
        gateway.reject(first.id)
        run_month(batch_orchestrator, 1)
        gateway.accept(first.id)

        run = run_month(batch_orchestrator, 2)

        assert run.settled == 2
        retried = installment_service.get_installment(first.id)
        assert retried.status == InstallmentStatus.DEDUCTED
        assert retried.retry_count == 1
        assert retried.payroll_batch_id == "PAY-2024-02"

    def test_exhausted_retries_cancel_and_alert(
        self, batch_orchestrator, scheduled_order, gateway, installment_service, alert_service,
    ):
        first = scheduled_order.installments[0]
        gateway.reject(first.id, "ON_LEAVE")

        runs = [run_month(batch_orchestrator, m) for m in range(1, 5)]

        assert [r.failed for r in runs[:3]] == [1, 1, 1]
        final = runs[3]
        assert final.cancelled == 1
        cancelled_item = next(i for i in final.item_results if i.installment_id == first.id)
        assert cancelled_item.outcome == ItemOutcome.CANCELLED
        assert len(final.alerts) == 1

        dto = installment_service.get_installment(first.id)
        assert dto.status == InstallmentStatus.CANCELLED
        assert dto.retry_count == 4

        (alert,) = alert_service.list_open(scheduled_order.order.id)
        assert alert.alert_type == AlertType.DEDUCTION_RETRIES_EXHAUSTED
        assert alert.installment_id == first.id
        assert alert.details["last_failure_reason"] == "ON_LEAVE"

        later = run_month(batch_orchestrator, 5)
        assert first.id not in {i.installment_id for i in later.item_results}


class TestGatewayErrors:
    @pytest.fixture
    def gateway(self):
        return UnreachableGateway()

    def test_transport_error_is_recorded_as_failure(
        self, batch_orchestrator, scheduled_order, gateway, installment_service,
    ):
        first = scheduled_order.installments[0]
        gateway.unreachable.add(first.id)

        run = run_month(batch_orchestrator, 1)

        assert run.status == PayrollBatchStatus.FAILED
        (item,) = run.item_results
        assert item.status == BatchItemStatus.FAILED
        assert item.outcome == ItemOutcome.FAILED
        assert item.error_code == "EXTERNAL_FAILURE"
        failed = installment_service.get_installment(first.id)
        assert failed.status == InstallmentStatus.FAILED
        assert failed.retry_count == 1
        assert failed.last_failure_reason == "ConnectionError: payroll host unreachable"

    def test_transport_errors_exhaust_retries(
        self, batch_orchestrator, scheduled_order, gateway, installment_service, alert_service,
    ):
        first = scheduled_order.installments[0]
        gateway.unreachable.add(first.id)

        runs = [run_month(batch_orchestrator, m) for m in range(1, 7)]

        assert runs[3].cancelled == 1
        dto = installment_service.get_installment(first.id)
        assert dto.status == InstallmentStatus.CANCELLED
        assert dto.retry_count == 4
        (alert,) = alert_service.list_open(scheduled_order.order.id)
        assert alert.alert_type == AlertType.DEDUCTION_RETRIES_EXHAUSTED
        later_ids = {i.installment_id for r in runs[4:] for i in r.item_results}
        assert first.id not in later_ids
        assert sum(1 for call in gateway.calls if call[0] == first.id) == 4


class TestHoldsAndCancellations:
    def test_held_order_is_skipped(
        self, batch_orchestrator, scheduled_order, order_service, gateway,
    ):
        order_service.place_on_hold(scheduled_order.order.id, "payroll dispute")

        run = run_month(batch_orchestrator, 1)

        assert run.status == PayrollBatchStatus.COMPLETED
        assert run.skipped == 1
        assert run.settled == 0
        assert gateway.calls == []

    def test_held_order_failures_are_not_rearmed(
        self, batch_orchestrator, scheduled_order, order_service, gateway, installment_service,
    ):
        first = scheduled_order.installments[0]
        gateway.reject(first.id)
        run_month(batch_orchestrator, 1)
        order_service.place_on_hold(scheduled_order.order.id, "payroll dispute")

        run_month(batch_orchestrator, 2)

        assert installment_service.get_installment(first.id).status == InstallmentStatus.FAILED

    def test_cancelled_order_installments_are_cancelled(
        self, session, batch_orchestrator, scheduled_order, installment_service, gateway,
    ):
        order_id = scheduled_order.order.id
        session.execute(
            update(OrderModel.__table__)
            .where(OrderModel.__table__.c.id == order_id)
            .values(status=OrderStatus.CANCELLED.value)
        )

        run = run_month(batch_orchestrator, 1)

        assert run.cancelled == 1
        assert run.status == PayrollBatchStatus.COMPLETED
        assert gateway.calls == []
        first = scheduled_order.installments[0]
        assert installment_service.get_installment(first.id).status == InstallmentStatus.CANCELLED

    def test_ledger_conflict_holds_order(
        self, batch_orchestrator, scheduled_order, ledger_service,
        installment_service, order_service, alert_service,
    ):
        order_id = scheduled_order.order.id
        first = scheduled_order.installments[0]
        # A stray payment for the same installment with a different amount.
        ledger_service.record_payment(order_id, first.id, Decimal("100.00"))

        run = run_month(batch_orchestrator, 1)

        assert run.failed == 1
        assert run.held_orders == (order_id,)
        (item,) = run.item_results
        assert item.outcome == ItemOutcome.HELD
        assert item.error_code == "RECONCILIATION_MISMATCH"
        assert installment_service.get_installment(first.id).status == InstallmentStatus.SCHEDULED
        assert order_service.get_order(order_id).on_hold
        (alert,) = alert_service.list_open(order_id)
        assert alert.alert_type == AlertType.RECONCILIATION_MISMATCH
        assert alert.details == {"expected": "100.00", "actual": "2016.66"}
