"""
BatchExecutor -- SAVEPOINT-per-item payroll batch execution.

Contract:
    ``run_batch()`` registers (or re-enters) a batch handle, prepares the
    task's items and runs each one in its own SAVEPOINT, then records the
    run counters on the batch row.

Architecture: epp_batch/services.  Imports from epp_batch.domain,
    epp_batch.models, epp_batch.tasks and the kernel.

Invariants enforced:
    - SAVEPOINT isolation per item: an exception rolls back that item only.
    - Idempotent reruns: a batch handle is bound to one cutoff date; the
      tasks never re-select work that already settled.
    - Concurrency guard: the batch row is locked (FOR UPDATE) and a RUNNING
      batch is never entered twice.
    - All timestamps from the injected Clock.
"""

from __future__ import annotations

import time
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from epp_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    ItemOutcome,
    PayrollBatch,
    PayrollBatchStatus,
    PayrollRunResult,
)
from epp_batch.models.batch import PayrollBatchItemModel, PayrollBatchModel
from epp_batch.tasks.base import BatchTaskResult, TaskRegistry
from epp_batch.tasks.payroll_tasks import DEDUCTION_TASK_TYPE
from epp_kernel.domain.clock import Clock, SystemClock
from epp_kernel.exceptions import BatchAlreadyRunningError, BatchIdempotencyError
from epp_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.executor")


class BatchExecutor:
    """Batch execution engine with SAVEPOINT-per-item isolation.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT schedule runs -- the payroll system triggers them.
    """

    def __init__(
        self,
        session: Session,
        task_registry: TaskRegistry,
        clock: Clock | None = None,
    ):
        self._session = session
        self._task_registry = task_registry
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run_batch(
        self,
        batch_id: str,
        cutoff_date: date,
        task_type: str = DEDUCTION_TASK_TYPE,
        parameters: dict[str, Any] | None = None,
    ) -> PayrollRunResult:
        """Run (or rerun) the batch identified by ``batch_id``.

        Raises:
            TaskNotRegisteredError: If task_type is not in the registry.
            BatchIdempotencyError: If batch_id is bound to another cutoff.
            BatchAlreadyRunningError: If the batch is RUNNING elsewhere.
        """
        start_time = time.monotonic()
        task = self._task_registry.get(task_type)
        batch = self._enter(batch_id, cutoff_date, task_type)
        run_number = batch.run_count
        now = self._clock.now()
        params = {**(parameters or {}), "batch_id": batch_id, "cutoff_date": cutoff_date}

        with LogContext.bind(batch_id=batch_id):
            logger.info(
                "payroll_batch_started",
                extra={
                    "task_type": task_type,
                    "cutoff_date": cutoff_date,
                    "run_number": run_number,
                },
            )

            try:
                items = task.prepare_items(params, self._session, now)
            except Exception as exc:
                logger.exception("payroll_batch_prepare_failed")
                batch.status = PayrollBatchStatus.FAILED.value
                batch.error_summary = f"prepare_items failed: {exc}"
                batch.completed_at = self._clock.now()
                batch.updated_at = batch.completed_at
                self._session.flush()
                raise

            batch.total_items = len(items)
            self._session.flush()

            item_results: list[BatchItemResult] = []
            held_orders: list[UUID] = []
            alerts: list[UUID] = []

            for batch_item in items:
                item_start = time.monotonic()
                savepoint = self._session.begin_nested()
                try:
                    result = task.execute_item(batch_item, params, self._session, now)
                    savepoint.commit()
                except Exception as exc:
                    savepoint.rollback()
                    logger.exception(
                        "payroll_batch_item_failed",
                        extra={"item_key": batch_item.item_key},
                    )
                    result = BatchTaskResult(
                        status=BatchItemStatus.FAILED,
                        outcome=ItemOutcome.FAILED,
                        order_id=batch_item.payload.get("order_id"),
                        installment_id=batch_item.payload.get("installment_id"),
                        error_code=getattr(exc, "code", "UNHANDLED_EXCEPTION"),
                        error_message=str(exc),
                    )

                if result.held_order is not None and result.held_order not in held_orders:
                    held_orders.append(result.held_order)
                alerts.extend(result.alert_ids)

                item_result = BatchItemResult(
                    item_index=batch_item.item_index,
                    item_key=batch_item.item_key,
                    status=result.status,
                    outcome=result.outcome,
                    order_id=result.order_id,
                    installment_id=result.installment_id,
                    error_code=result.error_code,
                    error_message=result.error_message,
                    deduction_reference=result.deduction_reference,
                    result_data=result.result_data,
                    duration_ms=int((time.monotonic() - item_start) * 1000),
                )
                item_results.append(item_result)
                self._session.add(
                    PayrollBatchItemModel.from_result(
                        item_result, batch.id, run_number, self._clock.now(),
                    )
                )

            run = self._finish(
                batch, run_number, cutoff_date, item_results, held_orders, alerts,
                int((time.monotonic() - start_time) * 1000),
            )

            logger.info(
                "payroll_batch_completed",
                extra={
                    "status": run.status.value,
                    "run_number": run_number,
                    "settled": run.settled,
                    "failed": run.failed,
                    "cancelled": run.cancelled,
                    "skipped": run.skipped,
                    "held_orders": len(run.held_orders),
                    "duration_ms": run.duration_ms,
                },
            )
            return run

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_batch(self, batch_id: str) -> PayrollBatch | None:
        model = self._find(batch_id)
        return model.to_dto() if model is not None else None

    def get_items(self, batch_id: str, run_number: int | None = None) -> tuple[BatchItemResult, ...]:
        model = self._find(batch_id)
        if model is None:
            return ()
        stmt = (
            select(PayrollBatchItemModel)
            .where(PayrollBatchItemModel.batch_ref_id == model.id)
            .order_by(PayrollBatchItemModel.run_number, PayrollBatchItemModel.item_index)
        )
        if run_number is not None:
            stmt = stmt.where(PayrollBatchItemModel.run_number == run_number)
        return tuple(m.to_dto() for m in self._session.execute(stmt).scalars())

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _find(self, batch_id: str, for_update: bool = False) -> PayrollBatchModel | None:
        stmt = select(PayrollBatchModel).where(PayrollBatchModel.batch_id == batch_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def _enter(self, batch_id: str, cutoff_date: date, task_type: str) -> PayrollBatchModel:
        now = self._clock.now()
        batch = self._find(batch_id, for_update=True)
        if batch is None:
            batch = PayrollBatchModel(
                batch_id=batch_id,
                task_type=task_type,
                cutoff_date=cutoff_date,
                status=PayrollBatchStatus.PENDING.value,
                run_count=0,
                created_at=now,
                updated_at=now,
            )
            self._session.add(batch)
        else:
            if batch.cutoff_date != cutoff_date or batch.task_type != task_type:
                raise BatchIdempotencyError(
                    batch_id, batch.cutoff_date.isoformat(), cutoff_date.isoformat(),
                )
            if batch.status == PayrollBatchStatus.RUNNING.value:
                raise BatchAlreadyRunningError(batch_id)

        batch.status = PayrollBatchStatus.RUNNING.value
        batch.run_count = batch.run_count + 1
        batch.started_at = now
        batch.completed_at = None
        batch.error_summary = None
        batch.updated_at = now
        self._session.flush()
        return batch

    def _finish(
        self,
        batch: PayrollBatchModel,
        run_number: int,
        cutoff_date: date,
        item_results: list[BatchItemResult],
        held_orders: list[UUID],
        alerts: list[UUID],
        duration_ms: int,
    ) -> PayrollRunResult:
        def count(outcome: ItemOutcome) -> int:
            return sum(1 for r in item_results if r.outcome == outcome)

        settled = count(ItemOutcome.DEDUCTED)
        cancelled = count(ItemOutcome.CANCELLED)
        failed = count(ItemOutcome.FAILED) + count(ItemOutcome.HELD)
        skipped = count(ItemOutcome.SKIPPED)
        succeeded_items = sum(1 for r in item_results if r.status == BatchItemStatus.SUCCEEDED)
        failed_items = sum(1 for r in item_results if r.status == BatchItemStatus.FAILED)
        skipped_items = sum(1 for r in item_results if r.status == BatchItemStatus.SKIPPED)

        if failed_items == 0:
            status = PayrollBatchStatus.COMPLETED
        elif succeeded_items == 0 and skipped_items == 0:
            status = PayrollBatchStatus.FAILED
        else:
            status = PayrollBatchStatus.PARTIALLY_COMPLETED

        completed_at = self._clock.now()
        batch.status = status.value
        batch.settled_items = settled
        batch.failed_items = failed
        batch.cancelled_items = cancelled
        batch.skipped_items = skipped
        batch.completed_at = completed_at
        batch.updated_at = completed_at
        batch.error_summary = f"{failed_items} item(s) failed" if failed_items else None
        self._session.flush()

        return PayrollRunResult(
            batch_id=batch.batch_id,
            cutoff_date=cutoff_date,
            run_number=run_number,
            status=status,
            settled=settled,
            failed=failed,
            cancelled=cancelled,
            skipped=skipped,
            held_orders=tuple(held_orders),
            alerts=tuple(alerts),
            item_results=tuple(item_results),
            started_at=batch.started_at,
            completed_at=completed_at,
            duration_ms=duration_ms,
        )
