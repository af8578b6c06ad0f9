"""
epp_services.reconciliation_service -- Ledger/installment reconciliation.

Responsibility:
    Checks that every financed order's ledger balance equals the sum of
    its installments still owed, and halts automation for any order that
    does not reconcile.

Architecture position:
    Services -- orchestration over kernel services.  Never corrects the
    ledger; corrections are operator-driven REVERSAL entries.

Invariants enforced:
    - A mismatch puts the order on hold and raises a
      RECONCILIATION_MISMATCH operator alert.  Nothing is auto-healed.

Usage:
    reconciliation = ReconciliationService(session, orders, ledger, alerts)
    outcomes = reconciliation.reconcile_all()
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from epp_kernel.domain.alert import AlertType
from epp_kernel.domain.order import OrderStatus
from epp_kernel.exceptions import ReconciliationError
from epp_kernel.logging_config import get_logger
from epp_kernel.models.order import OrderModel
from epp_kernel.services.alert_service import AlertService
from epp_kernel.services.ledger_service import LedgerService
from epp_kernel.services.order_service import OrderService

logger = get_logger("services.reconciliation")

# Orders that carry a LOAN entry and therefore a ledger balance.
FINANCED_STATUSES = (
    OrderStatus.SCHEDULED.value,
    OrderStatus.SETTLING.value,
    OrderStatus.CLOSED.value,
)


@dataclass(frozen=True)
class ReconciliationOutcome:
    order_id: UUID
    balanced: bool
    ledger_balance: Decimal | None = None
    outstanding_installments: Decimal | None = None
    alert_id: UUID | None = None
    reason: str | None = None


class ReconciliationService:
    """Detects ledger/installment drift and escalates it to operators."""

    def __init__(
        self,
        session: Session,
        orders: OrderService,
        ledger: LedgerService,
        alerts: AlertService,
    ) -> None:
        self._session = session
        self._orders = orders
        self._ledger = ledger
        self._alerts = alerts

    def reconcile_order(self, order_id: UUID) -> ReconciliationOutcome:
        try:
            report = self._ledger.reconcile(order_id)
        except ReconciliationError as exc:
            self._orders.place_on_hold(order_id, exc.reason)
            alert = self._alerts.raise_alert(
                AlertType.RECONCILIATION_MISMATCH,
                order_id,
                str(exc),
                details={"expected": exc.expected, "actual": exc.actual},
            )
            return ReconciliationOutcome(
                order_id=order_id,
                balanced=False,
                alert_id=alert.id,
                reason=exc.reason,
            )
        return ReconciliationOutcome(
            order_id=order_id,
            balanced=True,
            ledger_balance=report.ledger_balance,
            outstanding_installments=report.outstanding_installments,
        )

    def reconcile_all(self) -> tuple[ReconciliationOutcome, ...]:
        """Reconcile every financed order that is not already on hold."""
        order_ids = self._session.execute(
            select(OrderModel.id)
            .where(
                OrderModel.status.in_(FINANCED_STATUSES),
                OrderModel.on_hold.is_(False),
            )
            .order_by(OrderModel.created_at, OrderModel.order_number)
        ).scalars().all()

        outcomes = tuple(self.reconcile_order(order_id) for order_id in order_ids)
        mismatched = [o.order_id for o in outcomes if not o.balanced]
        log = logger.warning if mismatched else logger.info
        log(
            "reconciliation_completed",
            extra={
                "orders_checked": len(outcomes),
                "mismatches": len(mismatched),
            },
        )
        return outcomes
