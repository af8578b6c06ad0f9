"""
epp_kernel.services.alert_service -- Operator alerts.

Raises persistent alerts for conditions automation must not resolve on its
own (exhausted deduction retries, ledger/installment mismatches).  Every
alert is also logged at ERROR so log-based paging picks it up.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from epp_kernel.domain.alert import AlertType, OperatorAlert
from epp_kernel.domain.clock import Clock, SystemClock
from epp_kernel.exceptions import AlertNotFoundError
from epp_kernel.logging_config import get_logger
from epp_kernel.models.alert import OperatorAlertModel

logger = get_logger("services.alerts")


class AlertService:
    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    def raise_alert(
        self,
        alert_type: AlertType,
        order_id: UUID,
        message: str,
        *,
        installment_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> OperatorAlert:
        model = OperatorAlertModel(
            alert_type=alert_type.value,
            order_id=order_id,
            installment_id=installment_id,
            message=message,
            details=details or {},
            created_at=self._clock.now_utc(),
        )
        self._session.add(model)
        self._session.flush()

        logger.error(
            "operator_alert_raised",
            extra={
                "alert_id": str(model.id),
                "alert_type": alert_type.value,
                "order_id": str(order_id),
                "installment_id": str(installment_id) if installment_id else None,
                "alert_message": message,
            },
        )
        return model.to_dto()

    def list_open(self, order_id: UUID | None = None) -> tuple[OperatorAlert, ...]:
        stmt = (
            select(OperatorAlertModel)
            .where(OperatorAlertModel.acknowledged_at.is_(None))
            .order_by(OperatorAlertModel.created_at)
        )
        if order_id is not None:
            stmt = stmt.where(OperatorAlertModel.order_id == order_id)
        return tuple(m.to_dto() for m in self._session.execute(stmt).scalars())

    def acknowledge(self, alert_id: UUID, actor_id: UUID) -> OperatorAlert:
        model = self._session.get(OperatorAlertModel, alert_id)
        if model is None:
            raise AlertNotFoundError(str(alert_id))
        if model.acknowledged_at is None:
            model.acknowledged_at = self._clock.now_utc()
            model.acknowledged_by = actor_id
            self._session.flush()
            logger.info(
                "operator_alert_acknowledged",
                extra={"alert_id": str(alert_id), "actor_id": str(actor_id)},
            )
        return model.to_dto()
