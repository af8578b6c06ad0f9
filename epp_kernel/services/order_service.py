"""
epp_kernel.services.order_service -- Order creation and lifecycle.

Responsibility:
    Creates financed orders (snapshotting the rate policy in force), owns
    the per-order exclusive section and applies order status transitions
    on behalf of the approval, schedule and batch services.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Rate snapshot: rate_policy_version and monthly_rate are copied from
      the policy effective on the creation date and never rewritten.
    - Order status changes follow ORDER_TRANSITIONS.
    - Per-order serialization: lock() takes SELECT ... FOR UPDATE and
      touch() bumps the optimistic version on every mutation, including
      mutations that only change child rows (levels, installments).

Failure modes:
    - ValidationError on non-positive principal, disabled term, or an
      installment above the loan-to-income ceiling.
    - ConfigurationError if no rate exists for the customer class.
    - OrderNotFoundError, InvalidOrderTransitionError.
    - OptimisticLockError on a concurrent modification.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from epp_kernel.db.engine import flush_or_conflict
from epp_kernel.db.types import to_decimal
from epp_kernel.domain.clock import Clock, SystemClock
from epp_kernel.domain.order import Order, OrderStatus, validate_order_transition
from epp_kernel.domain.rate_policy import (
    CustomerClass,
    RatePolicyRegistry,
    coerce_customer_class,
)
from epp_kernel.domain.schedule import compute_totals
from epp_kernel.exceptions import (
    ConfigurationError,
    OrderNotFoundError,
    ValidationError,
)
from epp_kernel.logging_config import get_logger
from epp_kernel.models.order import OrderModel

logger = get_logger("services.order")


class OrderService:
    """Creates orders and applies their status transitions."""

    def __init__(
        self,
        session: Session,
        rate_policies: RatePolicyRegistry,
        clock: Clock | None = None,
        currency: str = "PHP",
    ) -> None:
        self._session = session
        self._rate_policies = rate_policies
        self._clock = clock or SystemClock()
        self._currency = currency

    def create_order(
        self,
        employee_id: UUID,
        principal: Decimal | int | str,
        customer_class: CustomerClass | str,
        term_months: int,
        *,
        workflow_name: str | None = None,
        credit_score: int | None = None,
        monthly_income: Decimal | None = None,
        order_number: str | None = None,
    ) -> Order:
        """Create an order in PENDING_APPROVAL with its rate snapshot."""
        amount = to_decimal(principal)
        if amount <= 0:
            raise ValidationError(
                f"Principal must be positive, got {amount}", field="principal",
            )

        today = self._clock.today()
        policy = self._rate_policies.active(today)
        try:
            policy.require_term(term_months)
        except ConfigurationError as exc:
            raise ValidationError(str(exc), field="term_months") from exc
        monthly_rate = policy.lookup_rate(customer_class, term_months)

        if monthly_income is not None:
            totals = compute_totals(amount, monthly_rate, term_months)
            if not policy.within_loan_to_income(totals.base_installment, monthly_income):
                raise ValidationError(
                    f"Monthly installment {totals.base_installment} exceeds "
                    f"loan-to-income ratio {policy.max_loan_to_income} "
                    f"of income {monthly_income}",
                    field="monthly_income",
                )

        now = self._clock.now_utc()
        order_id = uuid4()
        model = OrderModel(
            id=order_id,
            order_number=order_number or f"EPP-{today:%Y%m%d}-{order_id.hex[:8].upper()}",
            employee_id=employee_id,
            principal=amount,
            customer_class=coerce_customer_class(customer_class).value,
            term_months=term_months,
            status=OrderStatus.PENDING_APPROVAL.value,
            rate_policy_version=policy.version,
            monthly_rate=monthly_rate,
            currency=self._currency,
            workflow_name=workflow_name,
            credit_score=credit_score,
            on_hold=False,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "order_created",
            extra={
                "order_id": str(order_id),
                "order_number": model.order_number,
                "principal": str(amount),
                "term_months": term_months,
                "rate_policy_version": policy.version,
                "monthly_rate": str(monthly_rate),
            },
        )
        return model.to_dto()

    def get_order(self, order_id: UUID) -> Order:
        return self.load(order_id).to_dto()

    def load(self, order_id: UUID) -> OrderModel:
        model = self._session.get(OrderModel, order_id)
        if model is None:
            raise OrderNotFoundError(str(order_id))
        return model

    def lock(self, order_id: UUID) -> OrderModel:
        """Enter the per-order exclusive section (row lock + fresh state)."""
        model = self._session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise OrderNotFoundError(str(order_id))
        return model

    def touch(self, model: OrderModel) -> None:
        """Bump the optimistic version and flush."""
        model.version = model.version + 1
        model.updated_at = self._clock.now_utc()
        flush_or_conflict(self._session, "Order", model.id)

    def transition(
        self,
        model: OrderModel,
        to_status: OrderStatus,
        *,
        reason: str | None = None,
    ) -> None:
        from_status = OrderStatus(model.status)
        if from_status == to_status:
            self.touch(model)
            return
        validate_order_transition(model.id, from_status, to_status)

        now = self._clock.now_utc()
        model.status = to_status.value
        if to_status == OrderStatus.APPROVED:
            model.approved_at = now
        elif to_status == OrderStatus.CANCELLED:
            model.cancelled_at = now
            model.cancel_reason = reason
        elif to_status == OrderStatus.CLOSED:
            model.closed_at = now
        elif to_status == OrderStatus.SETTLING:
            model.closed_at = None
        self.touch(model)

        logger.info(
            "order_status_changed",
            extra={
                "order_id": str(model.id),
                "from_status": from_status.value,
                "to_status": to_status.value,
                "reason": reason,
            },
        )

    def place_on_hold(self, order_id: UUID, reason: str) -> Order:
        """Halt automated processing of the order until an operator releases it."""
        model = self.lock(order_id)
        model.on_hold = True
        model.hold_reason = reason
        self.touch(model)
        logger.warning(
            "order_placed_on_hold",
            extra={"order_id": str(order_id), "reason": reason},
        )
        return model.to_dto()

    def release_hold(self, order_id: UUID, actor_id: UUID) -> Order:
        model = self.lock(order_id)
        model.on_hold = False
        model.hold_reason = None
        self.touch(model)
        logger.info(
            "order_hold_released",
            extra={"order_id": str(order_id), "actor_id": str(actor_id)},
        )
        return model.to_dto()
