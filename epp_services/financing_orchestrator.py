"""
epp_services.financing_orchestrator -- Entry points of the financing core.

Responsibility:
    Composes the kernel services, the approval engine, the schedule
    generator and the payroll batch system around one session, and owns
    the single cross-component coupling: an order whose approval chain
    fully resolves gets its installment schedule (and LOAN entry)
    generated in the same transaction.

Architecture position:
    Services -- the top of the stack.  Imports from epp_kernel, epp_batch
    and epp_config; nothing imports from here.

Invariants enforced:
    - No schedule exists for an order that is not APPROVED: scheduling is
      only triggered after the approval engine derives APPROVED.
    - Credit scores at or below the auto-reject threshold cancel the order
      before any approval level is materialized.
    - All services share one Session and one Clock, so a caller's
      ``session_scope()`` makes every entry point atomic.

Failure modes:
    - Everything raised by the underlying services propagates unchanged.
      This class never catches a kernel error.

Usage:
    config = get_active_config()
    financing = FinancingOrchestrator(session, config, directory, gateway)
    submission = financing.submit_order(employee_id, "10000", "employee", 6)
    financing.resolve_level(submission.approvals[0].id, ApprovalDecision.APPROVE, manager_id)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from epp_batch.domain.types import PayrollRunResult
from epp_batch.gateway import DeductionGateway
from epp_batch.orchestrator import BatchOrchestrator
from epp_config.schema import EppConfiguration
from epp_kernel.db.types import to_decimal
from epp_kernel.domain.approval import (
    ActorDirectory,
    ApprovalDecision,
    ApprovalOutcome,
    ApprovalWorkflow,
    OrderApproval,
    TimeoutOutcome,
)
from epp_kernel.domain.clock import Clock, SystemClock
from epp_kernel.domain.installment import Installment, InstallmentOrderSummary
from epp_kernel.domain.ledger import LedgerView
from epp_kernel.domain.order import Order, OrderStatus
from epp_kernel.domain.rate_policy import CreditDecision, CustomerClass
from epp_kernel.logging_config import LogContext, get_logger
from epp_kernel.services.alert_service import AlertService
from epp_kernel.services.approval_service import ApprovalService
from epp_kernel.services.installment_service import InstallmentService
from epp_kernel.services.ledger_service import LedgerService
from epp_kernel.services.order_service import OrderService
from epp_kernel.services.schedule_service import (
    SchedulePreview,
    ScheduleResult,
    ScheduleService,
)
from epp_services.reconciliation_service import ReconciliationService

logger = get_logger("services.financing")


@dataclass(frozen=True)
class SubmissionResult:
    """What ``submit_order`` produced for one checkout."""

    order: Order
    credit_decision: CreditDecision | None
    approvals: tuple[OrderApproval, ...]
    schedule: ScheduleResult | None = None


@dataclass(frozen=True)
class ResolutionResult:
    outcome: ApprovalOutcome
    schedule: ScheduleResult | None = None


class FinancingOrchestrator:
    """Financing core facade: orders, approvals, schedules, payroll."""

    def __init__(
        self,
        session: Session,
        config: EppConfiguration,
        actor_directory: ActorDirectory,
        gateway: DeductionGateway,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()

        self.rate_policies = config.rate_policy_registry()
        self.orders = OrderService(
            session, self.rate_policies, self._clock, currency=config.currency,
        )
        self.ledger = LedgerService(session, self._clock)
        self.installments = InstallmentService(session, self.orders, self.ledger, self._clock)
        self.alerts = AlertService(session, self._clock)
        self.approvals = ApprovalService(
            session,
            self.orders,
            actor_directory,
            self._clock,
            escalation_policy=config.approval.escalation_policy,
        )
        self.schedules = ScheduleService(
            session,
            self.orders,
            self.installments,
            self.ledger,
            self.rate_policies,
            config.schedule.calendar(),
            self._clock,
            disbursement_lag_days=config.schedule.disbursement_lag_days,
            remainder_policy=config.schedule.remainder_policy,
        )
        self.batch = BatchOrchestrator.from_session(
            session,
            gateway,
            self.rate_policies,
            actor_directory,
            clock=self._clock,
            max_retries=config.payroll.max_retries,
            escalation_policy=config.approval.escalation_policy,
            cutoff_calendar=config.schedule.calendar(),
            disbursement_lag_days=config.schedule.disbursement_lag_days,
            remainder_policy=config.schedule.remainder_policy,
        )
        self.reconciliation = ReconciliationService(
            session, self.orders, self.ledger, self.alerts,
        )

    @classmethod
    def from_session(
        cls,
        session: Session,
        config: EppConfiguration,
        actor_directory: ActorDirectory,
        gateway: DeductionGateway,
        clock: Clock | None = None,
    ) -> FinancingOrchestrator:
        return cls(session, config, actor_directory, gateway, clock)

    @property
    def config(self) -> EppConfiguration:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def submit_order(
        self,
        employee_id: UUID,
        principal: Decimal | int | str,
        customer_class: CustomerClass | str,
        term_months: int,
        *,
        workflow_name: str | None = None,
        credit_score: int | None = None,
        monthly_income: Decimal | int | str | None = None,
        order_number: str | None = None,
    ) -> SubmissionResult:
        """
        Create an order and its approval chain.

        The workflow is the named one, otherwise the one whose amount range
        covers the principal.  A credit score in the auto-reject band
        cancels the order without creating a chain.  When every level
        auto-approves the schedule is generated immediately.
        """
        amount = to_decimal(principal)
        workflow = (
            self._config.workflow(workflow_name)
            if workflow_name is not None
            else self._config.workflow_for_amount(amount)
        )
        order = self.orders.create_order(
            employee_id,
            amount,
            customer_class,
            term_months,
            workflow_name=workflow.name,
            credit_score=credit_score,
            monthly_income=to_decimal(monthly_income) if monthly_income is not None else None,
            order_number=order_number,
        )

        with LogContext.bind(order_id=str(order.id)):
            decision = None
            if credit_score is not None:
                policy = self.rate_policies.get(order.rate_policy_version)
                decision = policy.classify_credit_score(credit_score)
                logger.info(
                    "credit_score_classified",
                    extra={"credit_score": credit_score, "decision": decision.value},
                )
                if decision == CreditDecision.AUTO_REJECT:
                    model = self.orders.lock(order.id)
                    self.orders.transition(
                        model,
                        OrderStatus.CANCELLED,
                        reason=f"Credit score {credit_score} below auto-reject threshold",
                    )
                    return SubmissionResult(
                        order=model.to_dto(), credit_decision=decision, approvals=(),
                    )

            approvals = self.approvals.create_approval_chain(order.id, workflow)
            schedule = self._schedule_if_approved(order.id)
            return SubmissionResult(
                order=self.orders.get_order(order.id),
                credit_decision=decision,
                approvals=approvals,
                schedule=schedule,
            )

    def create_approval_chain(
        self, order_id: UUID, workflow: ApprovalWorkflow | str | None = None,
    ) -> tuple[OrderApproval, ...]:
        """Materialize a chain; auto-schedules when every level auto-approved."""
        if workflow is None:
            workflow = self._config.workflow_for_amount(self.orders.get_order(order_id).principal)
        elif isinstance(workflow, str):
            workflow = self._config.workflow(workflow)
        approvals = self.approvals.create_approval_chain(order_id, workflow)
        self._schedule_if_approved(order_id)
        return approvals

    def resolve_level(
        self,
        order_approval_id: UUID,
        decision: ApprovalDecision,
        actor_id: UUID,
        comment: str = "",
    ) -> ResolutionResult:
        outcome = self.approvals.resolve_level(order_approval_id, decision, actor_id, comment)
        schedule = None
        if outcome.fully_approved:
            schedule = self.schedules.create_schedule(outcome.order_id)
        return ResolutionResult(outcome=outcome, schedule=schedule)

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    def generate_schedule(self, order_id: UUID, as_of: date | None = None) -> ScheduleResult:
        return self.schedules.create_schedule(order_id, as_of)

    def preview_schedule(
        self,
        principal: Decimal | int | str,
        customer_class: CustomerClass | str,
        term_months: int,
        start_date: date | None = None,
    ) -> SchedulePreview:
        return self.schedules.preview_schedule(principal, customer_class, term_months, start_date)

    def get_order_summary(self, order_id: UUID) -> InstallmentOrderSummary:
        return self.installments.get_order_summary(order_id)

    def refund_installment(
        self, installment_id: UUID, reason: str, reference_no: str | None = None,
    ) -> Installment:
        return self.installments.refund_installment(installment_id, reason, reference_no)

    def pay_installment(
        self,
        installment_id: UUID,
        *,
        payroll_batch_id: str | None = None,
        deduction_reference: str | None = None,
    ) -> Installment:
        return self.installments.pay_installment(
            installment_id,
            payroll_batch_id=payroll_batch_id,
            deduction_reference=deduction_reference,
        )

    # ------------------------------------------------------------------
    # Recurring jobs
    # ------------------------------------------------------------------

    def run_batch(self, batch_id: str, cutoff_date: date) -> PayrollRunResult:
        return self.batch.run_payroll(batch_id, cutoff_date)

    def sweep_timeouts(self, as_of: datetime | None = None) -> tuple[TimeoutOutcome, ...]:
        """Escalate overdue levels; orders the sweep fully approved get scheduled."""
        outcomes = self.approvals.sweep_timeouts(as_of)
        approved = {o.order_id for o in outcomes if o.order_status == OrderStatus.APPROVED}
        for order_id in sorted(approved, key=str):
            self._schedule_if_approved(order_id)
        return outcomes

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def get_ledger(self, employee_id: UUID, order_id: UUID | None = None) -> LedgerView:
        return self.ledger.get_ledger(employee_id, order_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _schedule_if_approved(self, order_id: UUID) -> ScheduleResult | None:
        if self.orders.get_order(order_id).status != OrderStatus.APPROVED:
            return None
        logger.info("order_approved_without_reviewer", extra={"order_id": str(order_id)})
        return self.schedules.create_schedule(order_id)
