"""
epp_batch.domain.types -- Pure frozen dataclasses for payroll batches.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections, the same way the kernel domain layer does it.

Invariants enforced:
    - All DTOs are frozen (replay safety).
    - PayrollBatch carries the opaque external ``batch_id`` that makes a
      rerun for the same cutoff idempotent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class PayrollBatchStatus(str, Enum):
    """Batch-level lifecycle status."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"  # Every item succeeded or was skipped
    PARTIALLY_COMPLETED = "PARTIALLY_COMPLETED"  # Some items failed
    FAILED = "FAILED"  # Nothing succeeded, or items could not be prepared


class BatchItemStatus(str, Enum):
    """Per-item status within one run."""

    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class ItemOutcome(str, Enum):
    """What happened to the installment (or order) behind an item."""

    DEDUCTED = "DEDUCTED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    SKIPPED = "SKIPPED"
    HELD = "HELD"
    ESCALATED = "ESCALATED"


# =============================================================================
# DTOs
# =============================================================================


@dataclass(frozen=True)
class PayrollBatch:
    """Immutable snapshot of a payroll batch record."""

    id: UUID
    batch_id: str
    task_type: str
    cutoff_date: date
    status: PayrollBatchStatus
    run_count: int = 0
    total_items: int = 0
    settled_items: int = 0
    failed_items: int = 0
    cancelled_items: int = 0
    skipped_items: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_summary: str | None = None


@dataclass(frozen=True)
class BatchItemResult:
    """Result of processing one item inside its own SAVEPOINT."""

    item_index: int
    item_key: str
    status: BatchItemStatus
    outcome: ItemOutcome
    order_id: UUID | None = None
    installment_id: UUID | None = None
    error_code: str | None = None
    error_message: str | None = None
    deduction_reference: str | None = None
    result_data: dict[str, Any] | None = None
    duration_ms: int = 0


@dataclass(frozen=True)
class PayrollRunResult:
    """Result of one ``run_batch`` invocation.

    ``settled`` counts installments moved to DEDUCTED, ``failed`` counts
    deductions that failed and remain retryable, ``cancelled`` counts
    installments cancelled (cancelled order or retries exhausted).
    """

    batch_id: str
    cutoff_date: date
    run_number: int
    status: PayrollBatchStatus
    settled: int = 0
    failed: int = 0
    cancelled: int = 0
    skipped: int = 0
    held_orders: tuple[UUID, ...] = ()
    alerts: tuple[UUID, ...] = ()
    item_results: tuple[BatchItemResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0

    @property
    def total_items(self) -> int:
        return len(self.item_results)


@dataclass(frozen=True)
class DeductionOutcome:
    """Answer of the deduction gateway for one installment."""

    success: bool
    reference: str | None = None
    failure_reason: str | None = None
