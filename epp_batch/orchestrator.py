"""
BatchOrchestrator -- DI container for the payroll batch system.

Contract:
    Wires a TaskRegistry with the deduction and timeout-sweep tasks and
    creates BatchExecutors.  Single place where batch dependencies are
    composed.

Architecture: epp_batch (top-level).  Nothing in epp_kernel imports from
    epp_batch at module level.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy.orm import Session

from epp_batch.domain.types import PayrollRunResult
from epp_batch.gateway import DeductionGateway
from epp_batch.services.executor import BatchExecutor
from epp_batch.tasks.base import TaskRegistry
from epp_batch.tasks.payroll_tasks import (
    DEDUCTION_TASK_TYPE,
    TIMEOUT_SWEEP_TASK_TYPE,
    ApprovalTimeoutSweepTask,
    InstallmentDeductionTask,
)
from epp_kernel.domain.approval import ActorDirectory, EscalationPolicy
from epp_kernel.domain.calendar import CutoffCalendar
from epp_kernel.domain.clock import Clock, SystemClock
from epp_kernel.domain.rate_policy import RatePolicyRegistry
from epp_kernel.domain.schedule import RemainderPolicy
from epp_kernel.logging_config import get_logger

logger = get_logger("batch.orchestrator")


def default_task_registry(
    gateway: DeductionGateway,
    rate_policies: RatePolicyRegistry,
    actor_directory: ActorDirectory,
    clock: Clock,
    max_retries: int = 3,
    escalation_policy: EscalationPolicy = EscalationPolicy.AUTO_REJECT,
    cutoff_calendar: CutoffCalendar | None = None,
    disbursement_lag_days: int = 0,
    remainder_policy: RemainderPolicy = RemainderPolicy.LAST_INSTALLMENT,
) -> TaskRegistry:
    """Create a TaskRegistry pre-loaded with both recurring payroll jobs.

    The schedule settings are used when a timeout sweep approves an order.
    """
    return TaskRegistry((
        InstallmentDeductionTask(gateway, rate_policies, clock, max_retries=max_retries),
        ApprovalTimeoutSweepTask(
            rate_policies,
            actor_directory,
            clock,
            escalation_policy=escalation_policy,
            cutoff_calendar=cutoff_calendar,
            disbursement_lag_days=disbursement_lag_days,
            remainder_policy=remainder_policy,
        ),
    ))


class BatchOrchestrator:
    """DI container for the payroll batch system.

    Non-goals:
        - Does NOT manage session lifecycle -- caller controls commits.
    """

    def __init__(
        self,
        session: Session,
        task_registry: TaskRegistry,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._task_registry = task_registry
        self._clock = clock or SystemClock()

    @classmethod
    def from_session(
        cls,
        session: Session,
        gateway: DeductionGateway,
        rate_policies: RatePolicyRegistry,
        actor_directory: ActorDirectory,
        clock: Clock | None = None,
        max_retries: int = 3,
        escalation_policy: EscalationPolicy = EscalationPolicy.AUTO_REJECT,
        task_registry: TaskRegistry | None = None,
        cutoff_calendar: CutoffCalendar | None = None,
        disbursement_lag_days: int = 0,
        remainder_policy: RemainderPolicy = RemainderPolicy.LAST_INSTALLMENT,
    ) -> BatchOrchestrator:
        effective_clock = clock or SystemClock()
        registry = task_registry if task_registry is not None else default_task_registry(
            gateway,
            rate_policies,
            actor_directory,
            effective_clock,
            max_retries=max_retries,
            escalation_policy=escalation_policy,
            cutoff_calendar=cutoff_calendar,
            disbursement_lag_days=disbursement_lag_days,
            remainder_policy=remainder_policy,
        )
        return cls(session=session, task_registry=registry, clock=effective_clock)

    def create_executor(self, session: Session | None = None) -> BatchExecutor:
        return BatchExecutor(
            session=session or self._session,
            task_registry=self._task_registry,
            clock=self._clock,
        )

    def run_payroll(self, batch_id: str, cutoff_date: date) -> PayrollRunResult:
        return self.create_executor().run_batch(batch_id, cutoff_date, DEDUCTION_TASK_TYPE)

    def run_timeout_sweep(
        self, as_of: datetime | None = None, batch_id: str | None = None,
    ) -> PayrollRunResult:
        """Run the approval-timeout sweep as a batch keyed by its date."""
        run_at = as_of or self._clock.now()
        cutoff = run_at.date()
        handle = batch_id or f"approval-sweep:{cutoff.isoformat()}"
        return self.create_executor().run_batch(
            handle, cutoff, TIMEOUT_SWEEP_TASK_TYPE, parameters={"as_of": run_at},
        )

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def task_registry(self) -> TaskRegistry:
        return self._task_registry
