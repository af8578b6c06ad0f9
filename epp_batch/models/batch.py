"""
ORM models for payroll batch persistence.

Contract:
    PayrollBatchModel holds one row per external batch handle; every run of
    that handle appends PayrollBatchItemModel rows tagged with the run
    number.  Both expose ``to_dto()``.

Architecture: epp_batch/models.  Imports from epp_kernel.db.base only.

Invariants enforced:
    - ``batch_id`` is UNIQUE: a batch handle is bound to one cutoff date.
    - The batch row is the concurrency guard (SELECT ... FOR UPDATE).
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from epp_kernel.db.base import Base, TrackedBase, UUIDString

if TYPE_CHECKING:
    from epp_batch.domain.types import BatchItemResult, PayrollBatch


class PayrollBatchModel(TrackedBase):
    """Persistent payroll batch record."""

    __tablename__ = "payroll_batches"

    __table_args__ = (
        Index("ix_payroll_batches_status", "status"),
        Index("ix_payroll_batches_cutoff", "cutoff_date"),
    )

    batch_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    task_type: Mapped[str] = mapped_column(String(200), nullable=False)
    cutoff_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    run_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    settled_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancelled_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list["PayrollBatchItemModel"]] = relationship(
        "PayrollBatchItemModel",
        back_populates="batch",
        foreign_keys="PayrollBatchItemModel.batch_ref_id",
    )

    def to_dto(self) -> PayrollBatch:
        from epp_batch.domain.types import PayrollBatch, PayrollBatchStatus

        return PayrollBatch(
            id=self.id,
            batch_id=self.batch_id,
            task_type=self.task_type,
            cutoff_date=self.cutoff_date,
            status=PayrollBatchStatus(self.status),
            run_count=self.run_count,
            total_items=self.total_items,
            settled_items=self.settled_items,
            failed_items=self.failed_items,
            cancelled_items=self.cancelled_items,
            skipped_items=self.skipped_items,
            started_at=self.started_at,
            completed_at=self.completed_at,
            error_summary=self.error_summary,
        )


class PayrollBatchItemModel(Base):
    """Per-item result of one batch run."""

    __tablename__ = "payroll_batch_items"

    __table_args__ = (
        Index("ix_payroll_batch_items_batch_run", "batch_ref_id", "run_number"),
        Index("ix_payroll_batch_items_installment", "installment_id"),
    )

    batch_ref_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payroll_batches.id", ondelete="CASCADE"),
        nullable=False,
    )
    run_number: Mapped[int] = mapped_column(Integer, nullable=False)
    item_index: Mapped[int] = mapped_column(Integer, nullable=False)
    item_key: Mapped[str] = mapped_column(String(200), nullable=False)
    order_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    installment_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    outcome: Mapped[str] = mapped_column(String(50), nullable=False)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    deduction_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    result_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    batch: Mapped["PayrollBatchModel"] = relationship(
        "PayrollBatchModel",
        back_populates="items",
        foreign_keys=[batch_ref_id],
    )

    def to_dto(self) -> BatchItemResult:
        from epp_batch.domain.types import BatchItemResult, BatchItemStatus, ItemOutcome

        return BatchItemResult(
            item_index=self.item_index,
            item_key=self.item_key,
            status=BatchItemStatus(self.status),
            outcome=ItemOutcome(self.outcome),
            order_id=self.order_id,
            installment_id=self.installment_id,
            error_code=self.error_code,
            error_message=self.error_message,
            deduction_reference=self.deduction_reference,
            result_data=self.result_data,
            duration_ms=self.duration_ms,
        )

    @classmethod
    def from_result(
        cls,
        result: BatchItemResult,
        batch_ref_id: UUID,
        run_number: int,
        created_at: datetime,
    ) -> PayrollBatchItemModel:
        return cls(
            batch_ref_id=batch_ref_id,
            run_number=run_number,
            item_index=result.item_index,
            item_key=result.item_key,
            order_id=result.order_id,
            installment_id=result.installment_id,
            status=result.status.value,
            outcome=result.outcome.value,
            error_code=result.error_code,
            error_message=result.error_message,
            deduction_reference=result.deduction_reference,
            result_data=result.result_data,
            duration_ms=result.duration_ms,
            created_at=created_at,
        )
