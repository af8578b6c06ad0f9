"""
Module: epp_kernel.models.approval
Responsibility: ORM persistence for materialized order approval levels.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - UNIQUE(order_id, approval_level): one row per level per order.
    - Valid status values (DB check constraint).
    - Immutable once resolved: a before_update listener rejects any change
      to a row whose stored status is APPROVED or REJECTED.  Rows are
      never deleted.

Failure modes:
    - IntegrityError on a duplicate chain.
    - ImmutabilityViolationError on modifying a resolved level or deleting
      any level.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.orm.attributes import get_history

from epp_kernel.db.base import Base, UUIDString
from epp_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from epp_kernel.domain.approval import OrderApproval


class OrderApprovalModel(Base):
    """Persistent approval level of one order."""

    __tablename__ = "order_approvals"

    __table_args__ = (
        UniqueConstraint(
            "order_id", "approval_level",
            name="uq_order_approvals_level",
        ),
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED')",
            name="ck_order_approvals_valid_status",
        ),
        CheckConstraint("approval_level >= 1", name="ck_order_approvals_level"),
        # Timeout sweep: pending levels by age
        Index("ix_order_approvals_pending", "status", "created_at"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False,
    )
    approval_level: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_role: Mapped[str] = mapped_column(String(50), nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_approve_under: Mapped[Decimal | None] = mapped_column(nullable=True)
    timeout_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    approver_id: Mapped[UUID | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    resolution_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    escalated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<OrderApproval {self.order_id} L{self.approval_level} "
            f"{self.approver_role} status={self.status}>"
        )

    def to_dto(self) -> OrderApproval:
        from epp_kernel.domain.approval import (
            ApprovalLevelStatus,
            OrderApproval as OrderApprovalDTO,
        )

        return OrderApprovalDTO(
            id=self.id,
            order_id=self.order_id,
            approval_level=self.approval_level,
            approver_role=self.approver_role,
            is_required=self.is_required,
            status=ApprovalLevelStatus(self.status),
            created_at=self.created_at,
            auto_approve_under=self.auto_approve_under,
            timeout_days=self.timeout_days,
            approver_id=self.approver_id,
            resolution_reason=self.resolution_reason,
            comment=self.comment,
            escalated_at=self.escalated_at,
            resolved_at=self.resolved_at,
        )


# =============================================================================
# ORM-Level Immutability for Resolved Levels
# =============================================================================


@event.listens_for(OrderApprovalModel, "before_update")
def prevent_resolved_level_update(mapper, connection, target):
    """Reject changes to a level whose persisted status is already terminal."""
    history = get_history(target, "status")
    stored_status = history.deleted[0] if history.deleted else target.status
    if stored_status != "PENDING":
        raise ImmutabilityViolationError(
            entity_type="OrderApproval",
            entity_id=str(target.id),
            reason=f"Approval level already resolved ({stored_status}) -- cannot modify",
        )


@event.listens_for(OrderApprovalModel, "before_delete")
def prevent_level_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="OrderApproval",
        entity_id=str(target.id),
        reason="Approval levels are never deleted",
    )
