"""ORM models for payroll batch persistence."""

from epp_batch.models.batch import PayrollBatchItemModel, PayrollBatchModel

__all__ = [
    "PayrollBatchItemModel",
    "PayrollBatchModel",
]
