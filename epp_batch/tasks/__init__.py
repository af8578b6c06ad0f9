"""Batch task protocol, registry and payroll task implementations."""

from epp_batch.tasks.base import BatchItemInput, BatchTask, BatchTaskResult, TaskRegistry
from epp_batch.tasks.payroll_tasks import (
    DEDUCTION_TASK_TYPE,
    TIMEOUT_SWEEP_TASK_TYPE,
    ApprovalTimeoutSweepTask,
    InstallmentDeductionTask,
)

__all__ = [
    "ApprovalTimeoutSweepTask",
    "BatchItemInput",
    "BatchTask",
    "BatchTaskResult",
    "DEDUCTION_TASK_TYPE",
    "InstallmentDeductionTask",
    "TaskRegistry",
    "TIMEOUT_SWEEP_TASK_TYPE",
]
