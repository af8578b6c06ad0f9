"""
EPP Kernel - installment financing core

Employee purchase program financing with:
- Versioned rate/term policies snapshotted per order
- Multi-level approval chains with timeout escalation
- Cent-exact installment schedules aligned to payroll cutoffs
- Append-only, idempotent installment ledger
"""

__version__ = "0.1.0"
