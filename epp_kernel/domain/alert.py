"""Operator alert types for conditions that need manual intervention."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class AlertType(str, Enum):
    DEDUCTION_RETRIES_EXHAUSTED = "DEDUCTION_RETRIES_EXHAUSTED"
    RECONCILIATION_MISMATCH = "RECONCILIATION_MISMATCH"


@dataclass(frozen=True)
class OperatorAlert:
    id: UUID
    alert_type: AlertType
    order_id: UUID
    message: str
    created_at: datetime
    installment_id: UUID | None = None
    details: dict[str, Any] = field(default_factory=dict)
    acknowledged_at: datetime | None = None
    acknowledged_by: UUID | None = None
