"""
epp_kernel.services.installment_service -- Installment lifecycle.

Responsibility:
    Applies installment status transitions (for schedule creation and the
    payroll batch), settles single installments by hand, refunds settled
    installments, defensively cancels open
    installments of cancelled orders, and reports per-order settlement
    progress.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/, and the
    order and ledger services.

Invariants enforced:
    - Every status change is validated against INSTALLMENT_TRANSITIONS.
    - A refund is always paired with a ledger REVERSAL, so the ledger keeps
      matching the installments still owed.
    - Order settlement status follows the ledger: CLOSED when the balance
      reaches zero, SETTLING otherwise.

Failure modes:
    - InstallmentNotFoundError.
    - InvalidInstallmentTransitionError on an illegal status change.
    - OptimisticLockError on a concurrent modification (version check).
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from epp_kernel.db.engine import flush_or_conflict
from epp_kernel.db.types import ZERO
from epp_kernel.domain.clock import Clock, SystemClock
from epp_kernel.domain.installment import (
    OPEN_STATUSES,
    Installment,
    InstallmentOrderSummary,
    InstallmentStatus,
    validate_installment_transition,
)
from epp_kernel.domain.order import OrderStatus
from epp_kernel.exceptions import InstallmentNotFoundError
from epp_kernel.logging_config import get_logger
from epp_kernel.models.installment import InstallmentModel
from epp_kernel.models.order import OrderModel
from epp_kernel.services.ledger_service import LedgerService
from epp_kernel.services.order_service import OrderService

logger = get_logger("services.installment")

# payroll_batch_id recorded on installments settled by an operator.
MANUAL_PAYMENT_BATCH = "manual"


class InstallmentService:
    """Installment state changes and settlement reporting."""

    def __init__(
        self,
        session: Session,
        orders: OrderService,
        ledger: LedgerService,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._orders = orders
        self._ledger = ledger
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def load(self, installment_id: UUID) -> InstallmentModel:
        model = self._session.get(InstallmentModel, installment_id)
        if model is None:
            raise InstallmentNotFoundError(str(installment_id))
        return model

    def get_installment(self, installment_id: UUID) -> Installment:
        return self.load(installment_id).to_dto()

    def list_for_order(self, order_id: UUID) -> list[InstallmentModel]:
        return list(
            self._session.execute(
                select(InstallmentModel)
                .where(InstallmentModel.order_id == order_id)
                .order_by(InstallmentModel.installment_number)
            ).scalars()
        )

    def get_order_summary(self, order_id: UUID) -> InstallmentOrderSummary:
        """Paid / pending / failed counts and amounts for one order."""
        self._orders.load(order_id)
        rows = [m.to_dto() for m in self.list_for_order(order_id)]
        paid = [r for r in rows if r.status == InstallmentStatus.DEDUCTED]
        total = sum((r.amount for r in rows), ZERO)
        paid_amount = sum((r.amount for r in paid), ZERO)
        return InstallmentOrderSummary(
            order_id=order_id,
            total_installments=len(rows),
            paid_count=len(paid),
            pending_count=sum(
                1 for r in rows
                if r.status in (InstallmentStatus.PENDING, InstallmentStatus.SCHEDULED)
            ),
            failed_count=sum(1 for r in rows if r.status == InstallmentStatus.FAILED),
            total_amount=total,
            paid_amount=paid_amount,
            remaining_amount=total - paid_amount,
            installments=tuple(rows),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        model: InstallmentModel,
        to_status: InstallmentStatus,
        *,
        note: str | None = None,
    ) -> None:
        from_status = InstallmentStatus(model.status)
        validate_installment_transition(model.id, from_status, to_status)
        model.status = to_status.value
        model.updated_at = self._clock.now_utc()
        if note:
            model.notes = note
        flush_or_conflict(self._session, "Installment", model.id)
        logger.info(
            "installment_status_changed",
            extra={
                "installment_id": str(model.id),
                "order_id": str(model.order_id),
                "installment_number": model.installment_number,
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )

    def mark_deducted(
        self,
        model: InstallmentModel,
        *,
        payroll_batch_id: str,
        deduction_reference: str,
        deducted_on: date,
    ) -> None:
        model.deducted_date = deducted_on
        model.payroll_batch_id = payroll_batch_id
        model.deduction_reference = deduction_reference
        model.last_failure_reason = None
        self.transition(model, InstallmentStatus.DEDUCTED)

    def mark_failed(self, model: InstallmentModel, *, payroll_batch_id: str, reason: str) -> None:
        model.retry_count = model.retry_count + 1
        model.payroll_batch_id = payroll_batch_id
        model.last_failure_reason = reason
        self.transition(model, InstallmentStatus.FAILED)

    def rearm(self, model: InstallmentModel) -> None:
        """FAILED -> SCHEDULED so the next batch retries the deduction."""
        self.transition(model, InstallmentStatus.SCHEDULED)

    def cancel(self, model: InstallmentModel, reason: str) -> None:
        self.transition(model, InstallmentStatus.CANCELLED, note=reason)

    def cancel_open_installments(self, order_id: UUID, reason: str) -> list[Installment]:
        """Cancel every installment the payroll batch could still act on."""
        cancelled = []
        for model in self.list_for_order(order_id):
            if InstallmentStatus(model.status) in OPEN_STATUSES:
                self.cancel(model, reason)
                cancelled.append(model.to_dto())
        if cancelled:
            logger.warning(
                "open_installments_cancelled",
                extra={
                    "order_id": str(order_id),
                    "count": len(cancelled),
                    "reason": reason,
                },
            )
        return cancelled

    def refund_installment(
        self,
        installment_id: UUID,
        reason: str,
        reference_no: str | None = None,
    ) -> Installment:
        """DEDUCTED -> REFUNDED, with the matching ledger reversal."""
        model = self.load(installment_id)
        order = self._orders.lock(model.order_id)
        self._session.refresh(model)

        self.transition(model, InstallmentStatus.REFUNDED, note=reason)
        self._ledger.record_reversal(
            order.id, model.id, model.amount, reason, reference_no=reference_no,
        )
        self.sync_order_settlement(order)
        return model.to_dto()

    def pay_installment(
        self,
        installment_id: UUID,
        *,
        payroll_batch_id: str | None = None,
        deduction_reference: str | None = None,
    ) -> Installment:
        """
        Settle one installment outside the payroll run.

        SCHEDULED or FAILED -> DEDUCTED with the matching PAYMENT credit,
        then the order's settlement status is re-derived.  A FAILED
        installment passes through SCHEDULED so the lifecycle stays legal.
        """
        model = self.load(installment_id)
        order = self._orders.lock(model.order_id)
        self._session.refresh(model)

        if model.status == InstallmentStatus.FAILED.value:
            self.rearm(model)
        else:
            validate_installment_transition(
                model.id, InstallmentStatus(model.status), InstallmentStatus.DEDUCTED,
            )
        batch_id = payroll_batch_id or MANUAL_PAYMENT_BATCH
        reference = deduction_reference or f"{batch_id}:{model.id}"
        self.mark_deducted(
            model,
            payroll_batch_id=batch_id,
            deduction_reference=reference,
            deducted_on=self._clock.today(),
        )
        self._ledger.record_payment(order.id, model.id, model.amount, reference_no=reference)
        self.sync_order_settlement(order)
        logger.info(
            "installment_paid_manually",
            extra={
                "installment_id": str(model.id),
                "order_id": str(order.id),
                "payroll_batch_id": batch_id,
                "deduction_reference": reference,
            },
        )
        return model.to_dto()

    def sync_order_settlement(self, order: OrderModel) -> OrderStatus:
        """Move a scheduled order to SETTLING or CLOSED from its ledger balance."""
        current = OrderStatus(order.status)
        if current not in (OrderStatus.SCHEDULED, OrderStatus.SETTLING, OrderStatus.CLOSED):
            return current
        target = (
            OrderStatus.CLOSED
            if self._ledger.get_balance(order.id) == ZERO
            else OrderStatus.SETTLING
        )
        self._orders.transition(order, target)
        return target
