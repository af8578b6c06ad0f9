"""
epp_kernel.services.ledger_service -- Append-only installment ledger.

Responsibility:
    Records the loan disbursement (DEBIT), installment payments (CREDIT)
    and refund reversals (DEBIT) for each order, keeps the per-order
    running balance, and answers ledger queries.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/, utils/.
    The ONLY writer of ledger balances.

Invariants enforced:
    - Running balance in append order: balance[i] = balance[i-1] + debit[i]
      - credit[i], baseline 0.  History is never recomputed.
    - Idempotency: one LOAN per order, one PAYMENT per installment, keyed
      by a unique idempotency key.  Re-delivery returns the existing entry.
    - Causal order: no PAYMENT before the order's LOAN.
    - No overpayment: a credit may not drive the balance below zero.

Failure modes:
    - ValidationError on a non-positive amount.
    - ReconciliationError on a payment before the loan, an overpayment, a
      re-delivery with a different amount, or a ledger/installment mismatch
      detected by reconcile().
    - OrderNotFoundError / InstallmentNotFoundError.
    - OptimisticLockError if another writer took the same sequence number.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from epp_kernel.db.types import ZERO, to_decimal
from epp_kernel.domain.clock import Clock, SystemClock
from epp_kernel.domain.installment import InstallmentStatus
from epp_kernel.domain.ledger import (
    LedgerEntry,
    LedgerEventType,
    LedgerLine,
    LedgerSummary,
    LedgerView,
)
from epp_kernel.exceptions import (
    InstallmentNotFoundError,
    OptimisticLockError,
    OrderNotFoundError,
    ReconciliationError,
    ValidationError,
)
from epp_kernel.logging_config import get_logger
from epp_kernel.models.installment import InstallmentModel
from epp_kernel.models.ledger import LedgerEntryModel
from epp_kernel.models.order import OrderModel
from epp_kernel.utils.idempotency import ledger_key

logger = get_logger("services.ledger")


@dataclass(frozen=True)
class ReconciliationReport:
    order_id: UUID
    ledger_balance: Decimal
    outstanding_installments: Decimal

    @property
    def balanced(self) -> bool:
        return self.ledger_balance == self.outstanding_installments


class LedgerService:
    """Append-only ledger writer and reader."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_loan(
        self,
        order_id: UUID,
        total_payable: Decimal,
        reference_no: str | None = None,
    ) -> LedgerEntry:
        """Debit the full financed amount once per order."""
        amount = self._positive(total_payable)
        key = ledger_key(LedgerEventType.LOAN.value, order_id)

        existing = self._find_by_key(key)
        if existing is not None:
            return self._replayed(existing, order_id, amount, existing.debit)

        order = self._load_order(order_id)
        return self._append(
            order,
            LedgerEventType.LOAN,
            debit=amount,
            credit=ZERO,
            installment_id=None,
            reference_no=reference_no or order.order_number,
            description=f"Installment loan for order {order.order_number}",
            key=key,
        )

    def record_payment(
        self,
        order_id: UUID,
        installment_id: UUID,
        amount: Decimal,
        reference_no: str | None = None,
    ) -> LedgerEntry:
        """Credit one installment deduction; re-delivery is a no-op."""
        credit = self._positive(amount)
        key = ledger_key(LedgerEventType.PAYMENT.value, order_id, installment_id)

        existing = self._find_by_key(key)
        if existing is not None:
            return self._replayed(existing, order_id, credit, existing.credit)

        order = self._load_order(order_id)
        installment = self._load_installment(order_id, installment_id)

        if self._find_by_key(ledger_key(LedgerEventType.LOAN.value, order_id)) is None:
            raise ReconciliationError(
                str(order_id), "payment recorded before the loan entry",
            )
        prior = self.get_balance(order_id)
        if credit > prior:
            raise ReconciliationError(
                str(order_id),
                "payment exceeds outstanding balance",
                expected=str(prior),
                actual=str(credit),
            )

        return self._append(
            order,
            LedgerEventType.PAYMENT,
            debit=ZERO,
            credit=credit,
            installment_id=installment.id,
            reference_no=reference_no,
            description=(
                f"Payroll deduction {installment.installment_number}/"
                f"{order.term_months} for order {order.order_number}"
            ),
            key=key,
        )

    def record_reversal(
        self,
        order_id: UUID,
        installment_id: UUID,
        amount: Decimal,
        reason: str,
        reference_no: str | None = None,
    ) -> LedgerEntry:
        """Debit back a refunded payment.  At most one reversal per installment."""
        debit = self._positive(amount)
        key = ledger_key(LedgerEventType.REVERSAL.value, order_id, installment_id)

        existing = self._find_by_key(key)
        if existing is not None:
            return self._replayed(existing, order_id, debit, existing.debit)

        order = self._load_order(order_id)
        installment = self._load_installment(order_id, installment_id)
        payment = self._find_by_key(
            ledger_key(LedgerEventType.PAYMENT.value, order_id, installment_id)
        )
        if payment is None:
            raise ReconciliationError(
                str(order_id), f"no payment to reverse for installment {installment_id}",
            )
        if debit != payment.credit:
            raise ReconciliationError(
                str(order_id),
                "reversal amount differs from the recorded payment",
                expected=str(payment.credit),
                actual=str(debit),
            )

        return self._append(
            order,
            LedgerEventType.REVERSAL,
            debit=debit,
            credit=ZERO,
            installment_id=installment.id,
            reference_no=reference_no,
            description=(
                f"Reversal of deduction {installment.installment_number} "
                f"for order {order.order_number}: {reason}"
            ),
            key=key,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(self, order_id: UUID) -> Decimal:
        last = self._last_entry(order_id)
        return last.balance if last is not None else ZERO

    def get_entries(self, order_id: UUID) -> tuple[LedgerEntry, ...]:
        rows = self._session.execute(
            select(LedgerEntryModel)
            .where(LedgerEntryModel.order_id == order_id)
            .order_by(LedgerEntryModel.seq)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def get_ledger(self, employee_id: UUID, order_id: UUID | None = None) -> LedgerView:
        """Chronological ledger of an employee, optionally for one order."""
        stmt = (
            select(
                LedgerEntryModel,
                OrderModel.order_number,
                InstallmentModel.installment_number,
                InstallmentModel.status,
            )
            .join(OrderModel, OrderModel.id == LedgerEntryModel.order_id)
            .outerjoin(
                InstallmentModel,
                InstallmentModel.id == LedgerEntryModel.installment_id,
            )
            .where(LedgerEntryModel.employee_id == employee_id)
            .order_by(LedgerEntryModel.created_at, LedgerEntryModel.seq)
        )
        if order_id is not None:
            stmt = stmt.where(LedgerEntryModel.order_id == order_id)

        lines = tuple(
            LedgerLine(
                entry=entry.to_dto(),
                order_number=order_number,
                installment_number=installment_number,
                installment_status=installment_status,
            )
            for entry, order_number, installment_number, installment_status
            in self._session.execute(stmt).all()
        )

        total_debit = sum((line.entry.debit for line in lines), ZERO)
        total_credit = sum((line.entry.credit for line in lines), ZERO)
        summary = LedgerSummary(
            total_orders=len({line.entry.order_id for line in lines}),
            total_entries=len(lines),
            total_debit=total_debit,
            total_credit=total_credit,
            outstanding_balance=total_debit - total_credit,
        )
        return LedgerView(
            employee_id=employee_id,
            order_id=order_id,
            summary=summary,
            lines=lines,
        )

    def reconcile(self, order_id: UUID) -> ReconciliationReport:
        """
        Compare the ledger balance with the installments still owed.

        Raises:
            ReconciliationError: The two disagree.  Nothing is corrected.
        """
        self._load_order(order_id)
        # Summed in Python: SQLite aggregates NUMERIC as float.
        amounts = self._session.execute(
            select(InstallmentModel.amount).where(
                InstallmentModel.order_id == order_id,
                InstallmentModel.status != InstallmentStatus.DEDUCTED.value,
            )
        ).scalars().all()
        report = ReconciliationReport(
            order_id=order_id,
            ledger_balance=self.get_balance(order_id),
            outstanding_installments=sum(amounts, ZERO),
        )
        if not report.balanced:
            raise ReconciliationError(
                str(order_id),
                "ledger balance does not match outstanding installments",
                expected=str(report.outstanding_installments),
                actual=str(report.ledger_balance),
            )
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _append(
        self,
        order: OrderModel,
        event_type: LedgerEventType,
        *,
        debit: Decimal,
        credit: Decimal,
        installment_id: UUID | None,
        reference_no: str | None,
        description: str,
        key: str,
    ) -> LedgerEntry:
        last = self._last_entry(order.id)
        prior = last.balance if last is not None else ZERO
        model = LedgerEntryModel(
            order_id=order.id,
            employee_id=order.employee_id,
            installment_id=installment_id,
            event_type=event_type.value,
            debit=debit,
            credit=credit,
            balance=prior + debit - credit,
            seq=(last.seq + 1) if last is not None else 1,
            reference_no=reference_no,
            description=description,
            idempotency_key=key,
            created_at=self._clock.now_utc(),
        )
        try:
            with self._session.begin_nested():
                self._session.add(model)
                self._session.flush()
        except IntegrityError:
            # Lost a race: either the same event was appended concurrently
            # (idempotent success) or another event took our sequence number.
            existing = self._find_by_key(key)
            if existing is not None:
                return existing.to_dto()
            raise OptimisticLockError("LedgerEntry", str(order.id)) from None

        logger.info(
            "ledger_entry_appended",
            extra={
                "order_id": str(order.id),
                "event_type": event_type.value,
                "debit": debit,
                "credit": credit,
                "balance": model.balance,
                "seq": model.seq,
            },
        )
        return model.to_dto()

    def _replayed(
        self,
        existing: LedgerEntryModel,
        order_id: UUID,
        amount: Decimal,
        recorded: Decimal,
    ) -> LedgerEntry:
        if amount != recorded:
            raise ReconciliationError(
                str(order_id),
                f"{existing.event_type} re-delivered with a different amount",
                expected=str(recorded),
                actual=str(amount),
            )
        logger.info(
            "ledger_entry_replayed",
            extra={
                "order_id": str(order_id),
                "event_type": existing.event_type,
                "idempotency_key": existing.idempotency_key,
            },
        )
        return existing.to_dto()

    def _find_by_key(self, key: str) -> LedgerEntryModel | None:
        return self._session.execute(
            select(LedgerEntryModel).where(LedgerEntryModel.idempotency_key == key)
        ).scalar_one_or_none()

    def _last_entry(self, order_id: UUID) -> LedgerEntryModel | None:
        return self._session.execute(
            select(LedgerEntryModel)
            .where(LedgerEntryModel.order_id == order_id)
            .order_by(LedgerEntryModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _load_order(self, order_id: UUID) -> OrderModel:
        order = self._session.get(OrderModel, order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    def _load_installment(self, order_id: UUID, installment_id: UUID) -> InstallmentModel:
        installment = self._session.get(InstallmentModel, installment_id)
        if installment is None:
            raise InstallmentNotFoundError(str(installment_id))
        if installment.order_id != order_id:
            raise ReconciliationError(
                str(order_id),
                f"installment {installment_id} belongs to order {installment.order_id}",
            )
        return installment

    @staticmethod
    def _positive(amount: Decimal) -> Decimal:
        value = to_decimal(amount)
        if value <= 0:
            raise ValidationError(f"Ledger amount must be positive, got {value}", field="amount")
        return value
