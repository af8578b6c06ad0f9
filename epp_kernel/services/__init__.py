"""Services for the EPP kernel (write side)."""

from epp_kernel.services.alert_service import AlertService
from epp_kernel.services.approval_service import ApprovalService
from epp_kernel.services.installment_service import InstallmentService
from epp_kernel.services.ledger_service import LedgerService, ReconciliationReport
from epp_kernel.services.order_service import OrderService
from epp_kernel.services.schedule_service import (
    SchedulePreview,
    ScheduleResult,
    ScheduleService,
)

__all__ = [
    "AlertService",
    "ApprovalService",
    "InstallmentService",
    "LedgerService",
    "OrderService",
    "ReconciliationReport",
    "SchedulePreview",
    "ScheduleResult",
    "ScheduleService",
]
