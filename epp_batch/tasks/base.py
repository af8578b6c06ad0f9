"""
Batch task contract.

A task selects its work items once per run (``prepare_items``) and then
processes them one at a time (``execute_item``), each inside the SAVEPOINT
the executor opens for it.  Results describe what happened to the
installment or order behind the item so the executor can count
settlements, failures, holds and alerts for the run.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from epp_batch.domain.types import BatchItemStatus, ItemOutcome
from epp_kernel.exceptions import TaskNotRegisteredError


@dataclass(frozen=True)
class BatchItemInput:
    """One unit of work; ``payload`` carries the ids the task needs."""

    item_index: int
    item_key: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchTaskResult:
    """What ``execute_item`` did.

    ``held_order`` and ``alert_ids`` report follow-up work for operators.
    A FAILED result is still committed: its side effects (retry counter,
    cancellation, alert) are the record of the failure.
    """

    status: BatchItemStatus
    outcome: ItemOutcome
    order_id: UUID | None = None
    installment_id: UUID | None = None
    deduction_reference: str | None = None
    result_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None
    held_order: UUID | None = None
    alert_ids: tuple[UUID, ...] = ()

    @classmethod
    def skipped(
        cls, order_id: UUID | None, installment_id: UUID | None = None, reason: str | None = None,
    ) -> BatchTaskResult:
        return cls(
            status=BatchItemStatus.SKIPPED,
            outcome=ItemOutcome.SKIPPED,
            order_id=order_id,
            installment_id=installment_id,
            error_message=reason,
        )


@runtime_checkable
class BatchTask(Protocol):
    """A recurring job the executor can run under a batch handle."""

    @property
    def task_type(self) -> str: ...

    @property
    def description(self) -> str: ...

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        """Select this run's items.  ``parameters`` holds batch_id and cutoff_date."""
        ...

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult: ...


class TaskRegistry:
    """Tasks keyed by ``task_type``; a type can be registered once."""

    def __init__(self, tasks: Iterable[BatchTask] = ()) -> None:
        self._tasks: dict[str, BatchTask] = {}
        for task in tasks:
            self.register(task)

    def register(self, task: BatchTask) -> None:
        if task.task_type in self._tasks:
            raise ValueError(f"Batch task {task.task_type!r} is already registered")
        self._tasks[task.task_type] = task

    def get(self, task_type: str) -> BatchTask:
        task = self._tasks.get(task_type)
        if task is None:
            raise TaskNotRegisteredError(task_type)
        return task

    def list_tasks(self) -> tuple[str, ...]:
        return tuple(sorted(self._tasks))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._tasks
