"""
Ledger domain types.

A ledger entry is an immutable fact.  ``balance`` is the per-order running
balance at append time (prior + debit - credit); it is never recomputed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class LedgerEventType(str, Enum):
    LOAN = "LOAN"
    PAYMENT = "PAYMENT"
    # Debit that restores a refunded payment.
    REVERSAL = "REVERSAL"


@dataclass(frozen=True)
class LedgerEntry:
    id: UUID
    order_id: UUID
    employee_id: UUID
    installment_id: UUID | None
    event_type: LedgerEventType
    debit: Decimal
    credit: Decimal
    balance: Decimal
    seq: int
    reference_no: str | None
    description: str
    idempotency_key: str
    created_at: datetime


@dataclass(frozen=True)
class LedgerLine:
    """A ledger entry enriched with order/installment context for display."""

    entry: LedgerEntry
    order_number: str
    installment_number: int | None = None
    installment_status: str | None = None


@dataclass(frozen=True)
class LedgerSummary:
    total_orders: int
    total_entries: int
    total_debit: Decimal
    total_credit: Decimal
    outstanding_balance: Decimal


@dataclass(frozen=True)
class LedgerView:
    employee_id: UUID
    order_id: UUID | None
    summary: LedgerSummary
    lines: tuple[LedgerLine, ...]

    @property
    def entries(self) -> tuple[LedgerEntry, ...]:
        return tuple(line.entry for line in self.lines)
