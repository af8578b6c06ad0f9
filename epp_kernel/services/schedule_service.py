"""
epp_kernel.services.schedule_service -- Schedule materialization.

Responsibility:
    Turns an APPROVED order into persisted installments plus its LOAN
    ledger entry, atomically, and previews schedules for the loan
    calculator without persisting anything.

Architecture position:
    Kernel > Services.  Wraps the pure generator in
    ``epp_kernel.domain.schedule`` with persistence.

Invariants enforced:
    - At most one schedule per order (checked under the order lock and by
      the UNIQUE(order_id, installment_number) constraint).
    - The schedule uses the order's snapshotted rate, never the policy in
      force today.
    - sum(installment amounts) == LOAN debit == total payable.

Failure modes:
    - InvalidOrderStateError if the order is not APPROVED.
    - ScheduleAlreadyExistsError if installments already exist.
    - ConfigurationError if the snapshotted policy version is unknown.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from epp_kernel.db.types import ZERO, to_decimal
from epp_kernel.domain.calendar import CutoffCalendar
from epp_kernel.domain.clock import Clock, SystemClock, ensure_utc
from epp_kernel.domain.installment import (
    Installment,
    InstallmentDraft,
    InstallmentStatus,
)
from epp_kernel.domain.ledger import LedgerEntry
from epp_kernel.domain.order import Order, OrderStatus
from epp_kernel.domain.rate_policy import CustomerClass, RatePolicyRegistry
from epp_kernel.domain.schedule import (
    RemainderPolicy,
    ScheduleTotals,
    compute_totals,
    generate_schedule,
)
from epp_kernel.exceptions import InvalidOrderStateError, ScheduleAlreadyExistsError
from epp_kernel.logging_config import get_logger
from epp_kernel.models.installment import InstallmentModel
from epp_kernel.services.installment_service import InstallmentService
from epp_kernel.services.ledger_service import LedgerService
from epp_kernel.services.order_service import OrderService

logger = get_logger("services.schedule")


@dataclass(frozen=True)
class SchedulePreview:
    """Loan-calculator output; nothing persisted."""

    totals: ScheduleTotals
    drafts: tuple[InstallmentDraft, ...]


@dataclass(frozen=True)
class ScheduleResult:
    order: Order
    totals: ScheduleTotals
    installments: tuple[Installment, ...]
    loan_entry: LedgerEntry


class ScheduleService:
    """Materializes installment schedules for approved orders."""

    def __init__(
        self,
        session: Session,
        orders: OrderService,
        installments: InstallmentService,
        ledger: LedgerService,
        rate_policies: RatePolicyRegistry,
        cutoff_calendar: CutoffCalendar,
        clock: Clock | None = None,
        *,
        disbursement_lag_days: int = 0,
        remainder_policy: RemainderPolicy = RemainderPolicy.LAST_INSTALLMENT,
    ) -> None:
        self._session = session
        self._orders = orders
        self._installments = installments
        self._ledger = ledger
        self._rate_policies = rate_policies
        self._calendar = cutoff_calendar
        self._clock = clock or SystemClock()
        self._lag = disbursement_lag_days
        self._remainder_policy = remainder_policy

    def preview_schedule(
        self,
        principal: Decimal | int | str,
        customer_class: CustomerClass | str,
        term_months: int,
        start_date: date | None = None,
    ) -> SchedulePreview:
        start = start_date or self._clock.today()
        policy = self._rate_policies.active(start)
        amount = to_decimal(principal)
        drafts = generate_schedule(
            amount,
            customer_class,
            term_months,
            self._calendar,
            policy=policy,
            start_date=start,
            disbursement_lag_days=self._lag,
            remainder_policy=self._remainder_policy,
        )
        totals = compute_totals(amount, policy.lookup_rate(customer_class, term_months), term_months)
        return SchedulePreview(totals=totals, drafts=drafts)

    def create_schedule(self, order_id: UUID, as_of: date | None = None) -> ScheduleResult:
        """
        Generate and persist the schedule of an APPROVED order.

        Inserts the installments, debits the LOAN entry, and moves the
        installments and the order to SCHEDULED in one flush sequence.  The
        caller's transaction makes it atomic.  Cutoffs advance from
        ``as_of`` when given, otherwise from the approval date.
        """
        order = self._orders.lock(order_id)
        status = OrderStatus(order.status)
        if status != OrderStatus.APPROVED:
            raise InvalidOrderStateError(
                str(order_id), status.value, OrderStatus.APPROVED.value,
            )
        existing = self._session.execute(
            select(func.count())
            .select_from(InstallmentModel)
            .where(InstallmentModel.order_id == order_id)
        ).scalar_one()
        if existing:
            raise ScheduleAlreadyExistsError(str(order_id))

        policy = self._rate_policies.get(order.rate_policy_version)
        if as_of is not None:
            start = as_of
        elif order.approved_at is not None:
            start = ensure_utc(order.approved_at).date()
        else:
            start = self._clock.today()
        drafts = generate_schedule(
            order.principal,
            order.customer_class,
            order.term_months,
            self._calendar,
            policy=policy,
            start_date=start,
            disbursement_lag_days=self._lag,
            remainder_policy=self._remainder_policy,
            monthly_rate=order.monthly_rate,
        )
        totals = compute_totals(order.principal, order.monthly_rate, order.term_months)

        now = self._clock.now_utc()
        models = [
            InstallmentModel(
                order_id=order.id,
                installment_number=d.installment_number,
                amount=d.amount,
                principal_amount=d.principal_amount,
                interest_amount=d.interest_amount,
                status=InstallmentStatus.PENDING.value,
                cut_off_date=d.cut_off_date,
                scheduled_date=d.scheduled_date,
                retry_count=0,
                created_at=now,
                updated_at=now,
            )
            for d in drafts
        ]
        self._session.add_all(models)
        self._session.flush()

        scheduled_total = sum((m.amount for m in models), ZERO)
        loan_entry = self._ledger.record_loan(order.id, scheduled_total)

        for model in models:
            self._installments.transition(model, InstallmentStatus.SCHEDULED)
        self._orders.transition(order, OrderStatus.SCHEDULED)

        logger.info(
            "schedule_created",
            extra={
                "order_id": str(order.id),
                "installments": len(models),
                "total_payable": str(totals.total_payable),
                "first_due": drafts[0].scheduled_date.isoformat(),
                "last_due": drafts[-1].scheduled_date.isoformat(),
            },
        )
        return ScheduleResult(
            order=order.to_dto(),
            totals=totals,
            installments=tuple(m.to_dto() for m in models),
            loan_entry=loan_entry,
        )
