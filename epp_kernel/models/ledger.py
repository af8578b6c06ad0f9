"""
Module: epp_kernel.models.ledger
Responsibility: ORM persistence for the append-only installment ledger.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Append-only: ORM before_update / before_delete listeners raise
      ImmutabilityViolationError.  Corrections are new REVERSAL entries.
    - Idempotency: UNIQUE(idempotency_key) -- one LOAN per order, one
      PAYMENT (and at most one REVERSAL) per installment.
    - Causal order: UNIQUE(order_id, seq); seq is assigned from the order's
      last entry while the order row is locked.
    - Exactly one side of an entry is non-zero.

Failure modes:
    - IntegrityError on a duplicate idempotency key or seq (concurrent
      re-delivery); LedgerService resolves it to the existing entry.
    - ImmutabilityViolationError on UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from epp_kernel.db.base import Base, UUIDString
from epp_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from epp_kernel.domain.ledger import LedgerEntry


class LedgerEntryModel(Base):
    """Persistent ledger entry. Append-only."""

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_ledger_entries_idempotency"),
        UniqueConstraint("order_id", "seq", name="uq_ledger_entries_order_seq"),
        CheckConstraint(
            "event_type IN ('LOAN', 'PAYMENT', 'REVERSAL')",
            name="ck_ledger_entries_event_type",
        ),
        CheckConstraint(
            "(debit > 0 AND credit = 0) OR (debit = 0 AND credit > 0)",
            name="ck_ledger_entries_one_side",
        ),
        Index("ix_ledger_entries_employee", "employee_id", "created_at"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    installment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("installments.id"), nullable=True,
    )
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    debit: Mapped[Decimal] = mapped_column(nullable=False)
    credit: Mapped[Decimal] = mapped_column(nullable=False)
    balance: Mapped[Decimal] = mapped_column(nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_no: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry {self.order_id}#{self.seq} {self.event_type} "
            f"dr={self.debit} cr={self.credit} bal={self.balance}>"
        )

    def to_dto(self) -> LedgerEntry:
        from epp_kernel.domain.ledger import LedgerEntry as LedgerEntryDTO, LedgerEventType

        return LedgerEntryDTO(
            id=self.id,
            order_id=self.order_id,
            employee_id=self.employee_id,
            installment_id=self.installment_id,
            event_type=LedgerEventType(self.event_type),
            debit=self.debit,
            credit=self.credit,
            balance=self.balance,
            seq=self.seq,
            reference_no=self.reference_no,
            description=self.description,
            idempotency_key=self.idempotency_key,
            created_at=self.created_at,
        )


@event.listens_for(LedgerEntryModel, "before_update")
def prevent_ledger_entry_update(mapper, connection, target):
    """Ledger entries are facts; they are never modified."""
    raise ImmutabilityViolationError(
        entity_type="LedgerEntry",
        entity_id=str(target.id),
        reason="Ledger entries are append-only -- post a REVERSAL instead",
    )


@event.listens_for(LedgerEntryModel, "before_delete")
def prevent_ledger_entry_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="LedgerEntry",
        entity_id=str(target.id),
        reason="Ledger entries are append-only -- cannot delete",
    )
