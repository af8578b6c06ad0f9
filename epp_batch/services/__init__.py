"""Batch execution services."""

from epp_batch.services.executor import BatchExecutor

__all__ = ["BatchExecutor"]
