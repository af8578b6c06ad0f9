"""Pure batch DTOs (ZERO I/O)."""

from epp_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    DeductionOutcome,
    ItemOutcome,
    PayrollBatch,
    PayrollBatchStatus,
    PayrollRunResult,
)

__all__ = [
    "BatchItemResult",
    "BatchItemStatus",
    "DeductionOutcome",
    "ItemOutcome",
    "PayrollBatch",
    "PayrollBatchStatus",
    "PayrollRunResult",
]
