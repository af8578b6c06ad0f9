"""
Module: epp_kernel.models.alert
Responsibility: ORM persistence for operator alerts (retry exhaustion,
    reconciliation mismatch).  Alerts are acknowledged, never deleted.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from epp_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from epp_kernel.domain.alert import OperatorAlert


class OperatorAlertModel(Base):
    __tablename__ = "operator_alerts"

    __table_args__ = (
        CheckConstraint(
            "alert_type IN ('DEDUCTION_RETRIES_EXHAUSTED', 'RECONCILIATION_MISMATCH')",
            name="ck_operator_alerts_type",
        ),
        Index("ix_operator_alerts_open", "acknowledged_at", "created_at"),
    )

    alert_type: Mapped[str] = mapped_column(String(50), nullable=False)
    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False,
    )
    installment_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    message: Mapped[str] = mapped_column(String(1000), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    acknowledged_at: Mapped[datetime | None] = mapped_column(nullable=True)
    acknowledged_by: Mapped[UUID | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<OperatorAlert {self.alert_type} order={self.order_id}>"

    def to_dto(self) -> OperatorAlert:
        from epp_kernel.domain.alert import AlertType, OperatorAlert as AlertDTO

        return AlertDTO(
            id=self.id,
            alert_type=AlertType(self.alert_type),
            order_id=self.order_id,
            message=self.message,
            created_at=self.created_at,
            installment_id=self.installment_id,
            details=dict(self.details or {}),
            acknowledged_at=self.acknowledged_at,
            acknowledged_by=self.acknowledged_by,
        )
