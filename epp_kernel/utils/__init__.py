"""Utility modules for the EPP kernel."""

from epp_kernel.utils.idempotency import generate_idempotency_key, ledger_key

__all__ = [
    "generate_idempotency_key",
    "ledger_key",
]
