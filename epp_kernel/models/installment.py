"""
Module: epp_kernel.models.installment
Responsibility: ORM persistence for scheduled installments.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - UNIQUE(order_id, installment_number): numbers 1..N once per order.
    - amount = principal_amount + interest_amount (DB check constraint).
    - Optimistic locking via ``version`` so that at most one settlement
      attempt mutates an installment at a time.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from epp_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from epp_kernel.domain.installment import Installment


class InstallmentModel(TrackedBase):
    """Persistent installment of an order's schedule."""

    __tablename__ = "installments"

    __table_args__ = (
        UniqueConstraint(
            "order_id", "installment_number",
            name="uq_installments_order_number",
        ),
        CheckConstraint(
            "status IN ('PENDING', 'SCHEDULED', 'DEDUCTED', 'FAILED', "
            "'CANCELLED', 'REFUNDED')",
            name="ck_installments_valid_status",
        ),
        CheckConstraint(
            "amount = principal_amount + interest_amount",
            name="ck_installments_amount_split",
        ),
        CheckConstraint("installment_number >= 1", name="ck_installments_number"),
        # Payroll batch selection: due SCHEDULED installments
        Index("ix_installments_due", "status", "scheduled_date"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False,
    )
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    principal_amount: Mapped[Decimal] = mapped_column(nullable=False)
    interest_amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    cut_off_date: Mapped[date] = mapped_column(nullable=False)
    scheduled_date: Mapped[date] = mapped_column(nullable=False)
    deducted_date: Mapped[date | None] = mapped_column(nullable=True)
    payroll_batch_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    deduction_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_failure_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Installment {self.order_id}#{self.installment_number} "
            f"{self.amount} status={self.status}>"
        )

    def to_dto(self) -> Installment:
        from epp_kernel.domain.installment import (
            Installment as InstallmentDTO,
            InstallmentStatus,
        )

        return InstallmentDTO(
            id=self.id,
            order_id=self.order_id,
            installment_number=self.installment_number,
            amount=self.amount,
            principal_amount=self.principal_amount,
            interest_amount=self.interest_amount,
            status=InstallmentStatus(self.status),
            cut_off_date=self.cut_off_date,
            scheduled_date=self.scheduled_date,
            deducted_date=self.deducted_date,
            payroll_batch_id=self.payroll_batch_id,
            deduction_reference=self.deduction_reference,
            retry_count=self.retry_count,
            last_failure_reason=self.last_failure_reason,
            notes=self.notes,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
