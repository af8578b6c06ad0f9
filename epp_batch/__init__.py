"""
epp_batch -- Payroll batch processing.

Runs the two recurring jobs of the financing core through one executor
with per-item SAVEPOINT isolation:

    payroll.installment_deduction  settle due installments via payroll
    approval.timeout_sweep         escalate overdue approval levels

Architecture:
    epp_batch/ is a top-level package above epp_kernel.  The kernel never
    imports from it; importing this package registers the batch tables on
    the kernel's Base.metadata so create_tables() picks them up.

Invariants:
    - SAVEPOINT isolation per item
    - Batch handle bound to one cutoff date; reruns are idempotent
    - Clock injection (no datetime.now() calls)
    - One running instance per batch handle
"""

import epp_batch.models  # noqa: F401
