"""
Deduction gateway contract.

The payroll system itself is external.  The batch only needs one answer
per installment: deducted (with a reference) or not (with a reason).  A
failed ``DeductionOutcome`` and any exception raised by ``deduct`` both use
up one of the installment's retries.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from epp_batch.domain.types import DeductionOutcome
from epp_kernel.domain.installment import Installment
from epp_kernel.exceptions import DeductionRejectedError


class DeductionGateway(Protocol):
    def deduct(self, installment: Installment, batch_id: str) -> DeductionOutcome: ...


class StaticDeductionGateway:
    """In-process gateway with scripted rejections (tests and local runs).

    Installments listed in ``rejections`` fail with the given reason; every
    other deduction succeeds with a deterministic reference.
    """

    def __init__(self, rejections: dict[UUID, str] | None = None):
        self._rejections: dict[UUID, str] = dict(rejections or {})
        self.calls: list[tuple[UUID, str]] = []

    def reject(self, installment_id: UUID, reason: str = "INSUFFICIENT_PAY") -> None:
        self._rejections[installment_id] = reason

    def accept(self, installment_id: UUID) -> None:
        self._rejections.pop(installment_id, None)

    def deduct(self, installment: Installment, batch_id: str) -> DeductionOutcome:
        self.calls.append((installment.id, batch_id))
        reason = self._rejections.get(installment.id)
        if reason is not None:
            raise DeductionRejectedError(str(installment.id), reason)
        return DeductionOutcome(
            success=True,
            reference=f"{batch_id}-{installment.installment_number:02d}-{installment.id.hex[:8]}",
        )
