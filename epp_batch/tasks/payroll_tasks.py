"""
Batch tasks: payroll deductions and approval timeouts.

InstallmentDeductionTask settles due installments against the deduction
gateway.  ApprovalTimeoutSweepTask escalates overdue approval levels, one
order per item, and schedules any order its escalation fully approved.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from epp_batch.domain.types import BatchItemStatus, ItemOutcome
from epp_batch.gateway import DeductionGateway
from epp_batch.tasks.base import BatchItemInput, BatchTaskResult
from epp_kernel.domain.alert import AlertType
from epp_kernel.domain.approval import ActorDirectory, EscalationPolicy
from epp_kernel.domain.calendar import CutoffCalendar
from epp_kernel.domain.clock import Clock
from epp_kernel.domain.installment import InstallmentStatus
from epp_kernel.domain.order import OrderStatus
from epp_kernel.domain.rate_policy import RatePolicyRegistry
from epp_kernel.domain.schedule import RemainderPolicy
from epp_kernel.exceptions import ExternalFailureError, ReconciliationError
from epp_kernel.logging_config import LogContext, get_logger
from epp_kernel.models.installment import InstallmentModel
from epp_kernel.models.order import OrderModel
from epp_kernel.services.alert_service import AlertService
from epp_kernel.services.approval_service import ApprovalService
from epp_kernel.services.installment_service import InstallmentService
from epp_kernel.services.ledger_service import LedgerService
from epp_kernel.services.order_service import OrderService
from epp_kernel.services.schedule_service import ScheduleService

logger = get_logger("batch.payroll")

DEDUCTION_TASK_TYPE = "payroll.installment_deduction"
TIMEOUT_SWEEP_TASK_TYPE = "approval.timeout_sweep"


def _cutoff(parameters: dict[str, Any]) -> date:
    value = parameters["cutoff_date"]
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


class InstallmentDeductionTask:
    """Deduct every due installment through the payroll gateway."""

    def __init__(
        self,
        gateway: DeductionGateway,
        rate_policies: RatePolicyRegistry,
        clock: Clock,
        max_retries: int = 3,
    ) -> None:
        self._gateway = gateway
        self._rate_policies = rate_policies
        self._clock = clock
        self._max_retries = max_retries

    @property
    def task_type(self) -> str:
        return DEDUCTION_TASK_TYPE

    @property
    def description(self) -> str:
        return "Deduct due installments through payroll"

    def _services(
        self, session: Session,
    ) -> tuple[OrderService, LedgerService, InstallmentService, AlertService]:
        orders = OrderService(session, self._rate_policies, self._clock)
        ledger = LedgerService(session, self._clock)
        installments = InstallmentService(session, orders, ledger, self._clock)
        return orders, ledger, installments, AlertService(session, self._clock)

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        """
        Re-arm retryable failures from earlier batches, then select every
        SCHEDULED installment due on or before the cutoff.

        Failures recorded by this same batch are not re-armed, so rerunning
        a batch never retries its own failures.
        """
        cutoff = _cutoff(parameters)
        batch_id = parameters["batch_id"]
        _, _, installments, _ = self._services(session)

        retryable = session.execute(
            select(InstallmentModel)
            .join(OrderModel, OrderModel.id == InstallmentModel.order_id)
            .where(
                InstallmentModel.status == InstallmentStatus.FAILED.value,
                InstallmentModel.scheduled_date <= cutoff,
                InstallmentModel.retry_count <= self._max_retries,
                InstallmentModel.payroll_batch_id != batch_id,
                OrderModel.on_hold.is_(False),
            )
            .order_by(InstallmentModel.order_id, InstallmentModel.installment_number)
        ).scalars().all()
        for model in retryable:
            installments.rearm(model)
        if retryable:
            logger.info(
                "failed_installments_rearmed",
                extra={"batch_id": batch_id, "count": len(retryable)},
            )

        due = session.execute(
            select(InstallmentModel.id, InstallmentModel.order_id)
            .where(
                InstallmentModel.status == InstallmentStatus.SCHEDULED.value,
                InstallmentModel.scheduled_date <= cutoff,
            )
            .order_by(InstallmentModel.order_id, InstallmentModel.installment_number)
        ).all()

        return tuple(
            BatchItemInput(
                item_index=i,
                item_key=str(installment_id),
                payload={"installment_id": installment_id, "order_id": order_id},
            )
            for i, (installment_id, order_id) in enumerate(due)
        )

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        batch_id = parameters["batch_id"]
        installment_id: UUID = item.payload["installment_id"]
        order_id: UUID = item.payload["order_id"]
        orders, ledger, installments, alerts = self._services(session)

        with LogContext.bind(
            batch_id=batch_id, order_id=str(order_id), installment_id=str(installment_id),
        ):
            order = orders.lock(order_id)
            model = session.execute(
                select(InstallmentModel)
                .where(InstallmentModel.id == installment_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one()

            if model.status != InstallmentStatus.SCHEDULED.value:
                return BatchTaskResult.skipped(
                    order_id, installment_id, f"installment is {model.status}",
                )

            if order.status == OrderStatus.CANCELLED.value:
                installments.cancel(model, "Order cancelled before deduction")
                return BatchTaskResult(
                    status=BatchItemStatus.SUCCEEDED,
                    outcome=ItemOutcome.CANCELLED,
                    order_id=order_id,
                    installment_id=installment_id,
                )

            if order.on_hold:
                return BatchTaskResult.skipped(order_id, installment_id, "order on hold")

            try:
                outcome = self._gateway.deduct(model.to_dto(), batch_id)
            except ExternalFailureError as exc:
                return self._record_failure(
                    installments, alerts, model, batch_id,
                    getattr(exc, "reason", None) or str(exc), exc.code,
                )
            except Exception as exc:
                # Transport errors count against the retry budget like a rejection.
                logger.warning("deduction_gateway_error", exc_info=True)
                return self._record_failure(
                    installments, alerts, model, batch_id,
                    f"{type(exc).__name__}: {exc}", ExternalFailureError.code,
                )
            if not outcome.success:
                return self._record_failure(
                    installments, alerts, model, batch_id,
                    outcome.failure_reason or "deduction failed", ExternalFailureError.code,
                )

            try:
                with session.begin_nested():
                    installments.mark_deducted(
                        model,
                        payroll_batch_id=batch_id,
                        deduction_reference=outcome.reference or batch_id,
                        deducted_on=as_of.date(),
                    )
                    ledger.record_payment(
                        order_id, installment_id, model.amount,
                        reference_no=outcome.reference,
                    )
                    installments.sync_order_settlement(order)
            except ReconciliationError as exc:
                return self._hold(orders, alerts, order_id, installment_id, exc)

            logger.info(
                "installment_deducted",
                extra={
                    "installment_number": model.installment_number,
                    "amount": model.amount,
                    "deduction_reference": outcome.reference,
                },
            )
            return BatchTaskResult(
                status=BatchItemStatus.SUCCEEDED,
                outcome=ItemOutcome.DEDUCTED,
                order_id=order_id,
                installment_id=installment_id,
                deduction_reference=outcome.reference,
                result_data={
                    "amount": str(model.amount),
                    "order_status": order.status,
                },
            )

    def _record_failure(
        self,
        installments: InstallmentService,
        alerts: AlertService,
        model: InstallmentModel,
        batch_id: str,
        reason: str,
        error_code: str,
    ) -> BatchTaskResult:
        installments.mark_failed(model, payroll_batch_id=batch_id, reason=reason)
        logger.warning(
            "installment_deduction_failed",
            extra={
                "installment_number": model.installment_number,
                "retry_count": model.retry_count,
                "max_retries": self._max_retries,
                "reason": reason,
            },
        )
        if model.retry_count <= self._max_retries:
            return BatchTaskResult(
                status=BatchItemStatus.FAILED,
                outcome=ItemOutcome.FAILED,
                order_id=model.order_id,
                installment_id=model.id,
                error_code=error_code,
                error_message=reason,
            )

        installments.cancel(model, f"Deduction retries exhausted: {reason}")
        alert = alerts.raise_alert(
            AlertType.DEDUCTION_RETRIES_EXHAUSTED,
            model.order_id,
            f"Installment {model.installment_number} could not be deducted after "
            f"{model.retry_count} attempts",
            installment_id=model.id,
            details={"last_failure_reason": reason, "retry_count": model.retry_count},
        )
        return BatchTaskResult(
            status=BatchItemStatus.FAILED,
            outcome=ItemOutcome.CANCELLED,
            order_id=model.order_id,
            installment_id=model.id,
            error_code=error_code,
            error_message=reason,
            alert_ids=(alert.id,),
        )

    @staticmethod
    def _hold(
        orders: OrderService,
        alerts: AlertService,
        order_id: UUID,
        installment_id: UUID,
        exc: ReconciliationError,
    ) -> BatchTaskResult:
        orders.place_on_hold(order_id, exc.reason)
        alert = alerts.raise_alert(
            AlertType.RECONCILIATION_MISMATCH,
            order_id,
            str(exc),
            installment_id=installment_id,
            details={"expected": exc.expected, "actual": exc.actual},
        )
        return BatchTaskResult(
            status=BatchItemStatus.FAILED,
            outcome=ItemOutcome.HELD,
            order_id=order_id,
            installment_id=installment_id,
            error_code=exc.code,
            error_message=str(exc),
            held_order=order_id,
            alert_ids=(alert.id,),
        )


class ApprovalTimeoutSweepTask:
    """Escalate approval levels that outlived their timeout.

    Under AUTO_APPROVE a sweep can approve the last pending level; the
    order's schedule is then generated in the same item savepoint, using
    ``cutoff_calendar`` (monthly on the 30th unless given).
    """

    def __init__(
        self,
        rate_policies: RatePolicyRegistry,
        actor_directory: ActorDirectory,
        clock: Clock,
        escalation_policy: EscalationPolicy = EscalationPolicy.AUTO_REJECT,
        *,
        cutoff_calendar: CutoffCalendar | None = None,
        disbursement_lag_days: int = 0,
        remainder_policy: RemainderPolicy = RemainderPolicy.LAST_INSTALLMENT,
    ) -> None:
        self._rate_policies = rate_policies
        self._actor_directory = actor_directory
        self._clock = clock
        self._escalation_policy = escalation_policy
        self._calendar = cutoff_calendar or CutoffCalendar()
        self._lag = disbursement_lag_days
        self._remainder_policy = remainder_policy

    @property
    def task_type(self) -> str:
        return TIMEOUT_SWEEP_TASK_TYPE

    @property
    def description(self) -> str:
        return "Escalate timed-out approval levels"

    def _services(self, session: Session) -> tuple[ApprovalService, ScheduleService]:
        orders = OrderService(session, self._rate_policies, self._clock)
        ledger = LedgerService(session, self._clock)
        installments = InstallmentService(session, orders, ledger, self._clock)
        approvals = ApprovalService(
            session,
            orders,
            self._actor_directory,
            self._clock,
            escalation_policy=self._escalation_policy,
        )
        schedules = ScheduleService(
            session,
            orders,
            installments,
            ledger,
            self._rate_policies,
            self._calendar,
            self._clock,
            disbursement_lag_days=self._lag,
            remainder_policy=self._remainder_policy,
        )
        return approvals, schedules

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        approvals, _ = self._services(session)
        candidates = approvals.timeout_candidates(parameters.get("as_of") or as_of)
        return tuple(
            BatchItemInput(item_index=i, item_key=str(order_id), payload={"order_id": order_id})
            for i, order_id in enumerate(candidates)
        )

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        order_id: UUID = item.payload["order_id"]
        approvals, schedules = self._services(session)
        outcomes = approvals.sweep_order(order_id, parameters.get("as_of") or as_of)
        if not outcomes:
            return BatchTaskResult.skipped(order_id)

        result_data: dict[str, Any] = {
            "actions": [o.action.value for o in outcomes],
            "levels": [o.approval_level for o in outcomes],
            "order_status": outcomes[-1].order_status.value,
        }
        if outcomes[-1].order_status == OrderStatus.APPROVED:
            schedule = schedules.create_schedule(order_id)
            result_data["order_status"] = schedule.order.status.value
            result_data["installments"] = len(schedule.installments)
        return BatchTaskResult(
            status=BatchItemStatus.SUCCEEDED,
            outcome=ItemOutcome.ESCALATED,
            order_id=order_id,
            result_data=result_data,
        )
