"""
Module: epp_kernel.models.order
Responsibility: ORM persistence for financed orders.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Valid status values (DB check constraint); legal transitions are
      enforced by OrderService against ORDER_TRANSITIONS.
    - rate_policy_version / monthly_rate are written once at creation.
    - Optimistic locking via ``version`` (SQLAlchemy version_id_col).  Every
      per-order mutation touches this row, so concurrent mutations of the
      same order collide here.

Failure modes:
    - IntegrityError on duplicate order_number.
    - StaleDataError on concurrent modification (surfaced by the services
      as OptimisticLockError).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from epp_kernel.db.base import TrackedBase

if TYPE_CHECKING:
    from epp_kernel.domain.order import Order


class OrderModel(TrackedBase):
    """Persistent financed order."""

    __tablename__ = "orders"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING_APPROVAL', 'APPROVED', 'CANCELLED', "
            "'SCHEDULED', 'SETTLING', 'CLOSED')",
            name="ck_orders_valid_status",
        ),
        CheckConstraint("principal > 0", name="ck_orders_positive_principal"),
        CheckConstraint("term_months > 0", name="ck_orders_positive_term"),
        Index("ix_orders_employee", "employee_id"),
        Index("ix_orders_status", "status"),
    )

    order_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    principal: Mapped[Decimal] = mapped_column(nullable=False)
    customer_class: Mapped[str] = mapped_column(String(20), nullable=False)
    term_months: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default="PENDING_APPROVAL",
    )
    rate_policy_version: Mapped[int] = mapped_column(Integer, nullable=False)
    monthly_rate: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="PHP")
    workflow_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    credit_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)
    on_hold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hold_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Bumped explicitly by OrderService.touch() on every per-order mutation,
    # including ones that only change child rows.
    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    def __repr__(self) -> str:
        return f"<Order {self.order_number} status={self.status} v{self.version}>"

    def to_dto(self) -> Order:
        from epp_kernel.domain.order import Order as OrderDTO, OrderStatus
        from epp_kernel.domain.rate_policy import CustomerClass

        return OrderDTO(
            id=self.id,
            order_number=self.order_number,
            employee_id=self.employee_id,
            principal=self.principal,
            customer_class=CustomerClass(self.customer_class),
            term_months=self.term_months,
            status=OrderStatus(self.status),
            rate_policy_version=self.rate_policy_version,
            monthly_rate=self.monthly_rate,
            currency=self.currency,
            workflow_name=self.workflow_name,
            credit_score=self.credit_score,
            cancel_reason=self.cancel_reason,
            on_hold=self.on_hold,
            hold_reason=self.hold_reason,
            approved_at=self.approved_at,
            cancelled_at=self.cancelled_at,
            closed_at=self.closed_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )
