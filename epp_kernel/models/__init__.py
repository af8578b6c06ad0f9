"""SQLAlchemy ORM models for the EPP kernel."""

from epp_kernel.models.alert import OperatorAlertModel
from epp_kernel.models.approval import OrderApprovalModel
from epp_kernel.models.installment import InstallmentModel
from epp_kernel.models.ledger import LedgerEntryModel
from epp_kernel.models.order import OrderModel

__all__ = [
    "InstallmentModel",
    "LedgerEntryModel",
    "OperatorAlertModel",
    "OrderApprovalModel",
    "OrderModel",
]
