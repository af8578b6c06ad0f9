"""
Installment schedule generator (``epp_kernel.domain.schedule``).

Responsibility
--------------
Convert a financed principal and term into an ordered, cent-exact list of
installment drafts using flat-rate interest.

Architecture position
---------------------
**Kernel domain layer** -- pure function.  ZERO I/O.  Persistence lives
in ``epp_kernel.services.schedule_service``.

Algorithm
---------
::

    total_interest = round_half_up(principal * monthly_rate * term, 2)
    total_payable  = principal + total_interest
    base           = floor(total_payable / term, 2)

LAST_INSTALLMENT: installments 1..N-1 get ``base`` and installment N gets
``total_payable - base * (N - 1)``.  DISTRIBUTE: the remainder cents are
handed out one at a time to the leading installments.  The principal part
of each installment is pro-rated with ``floor(amount * principal /
total_payable, 2)`` and the last installment absorbs the remainder; the
interest part is the difference.  So per row ``amount == principal_amount +
interest_amount`` and each column sums exactly.

Worked example: principal 10000, rate 0.035, term 6 -> interest 2100.00,
payable 12100.00, five installments of 2016.66 and a last of 2016.70.

Failure modes
-------------
* ``ValidationError`` -- principal <= 0, or term not enabled.
* ``ConfigurationError`` -- no rate configured for the customer class.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum

from epp_kernel.db.types import floor_money, round_money
from epp_kernel.domain.calendar import CutoffCalendar
from epp_kernel.domain.installment import InstallmentDraft
from epp_kernel.domain.rate_policy import CustomerClass, RatePolicy
from epp_kernel.exceptions import ConfigurationError, ValidationError

CENT = Decimal("0.01")


class RemainderPolicy(str, Enum):
    """Where the rounding remainder of the installment split goes."""

    LAST_INSTALLMENT = "LAST_INSTALLMENT"
    DISTRIBUTE = "DISTRIBUTE"


@dataclass(frozen=True)
class ScheduleTotals:
    principal: Decimal
    monthly_rate: Decimal
    term: int
    total_interest: Decimal
    total_payable: Decimal
    base_installment: Decimal


def compute_totals(principal: Decimal, monthly_rate: Decimal, term: int) -> ScheduleTotals:
    """Flat-rate totals for a loan (the loan-calculator figures)."""
    principal = round_money(principal)
    total_interest = round_money(principal * monthly_rate * term)
    total_payable = principal + total_interest
    return ScheduleTotals(
        principal=principal,
        monthly_rate=monthly_rate,
        term=term,
        total_interest=total_interest,
        total_payable=total_payable,
        base_installment=floor_money(total_payable / term),
    )


def split_amounts(
    total: Decimal, count: int, remainder_policy: RemainderPolicy,
) -> list[Decimal]:
    """Split ``total`` into ``count`` cent amounts that sum exactly to it."""
    base = floor_money(total / count)
    if remainder_policy == RemainderPolicy.DISTRIBUTE:
        extra_cents = int((total - base * count) / CENT)
        return [base + CENT if i < extra_cents else base for i in range(count)]
    return [base] * (count - 1) + [total - base * (count - 1)]


def _split_principal(
    amounts: list[Decimal], principal: Decimal, total_payable: Decimal,
) -> list[Decimal]:
    parts = [floor_money(a * principal / total_payable) for a in amounts[:-1]]
    parts.append(principal - sum(parts, Decimal("0")))
    return parts


def generate_schedule(
    principal: Decimal,
    customer_class: CustomerClass | str,
    term: int,
    cutoff_calendar: CutoffCalendar,
    *,
    policy: RatePolicy,
    start_date: date,
    disbursement_lag_days: int = 0,
    remainder_policy: RemainderPolicy = RemainderPolicy.LAST_INSTALLMENT,
    monthly_rate: Decimal | None = None,
) -> tuple[InstallmentDraft, ...]:
    """
    Build the installment drafts for a financed order.

    ``start_date`` is the approval date; the first cutoff is the first one
    strictly after it.  ``monthly_rate`` overrides the policy lookup when
    the order already snapshotted its rate.
    """
    if principal <= 0:
        raise ValidationError(f"Principal must be positive, got {principal}", field="principal")
    if term <= 0:
        raise ValidationError(f"Term must be positive, got {term}", field="term")
    try:
        policy.require_term(term)
    except ConfigurationError as exc:
        raise ValidationError(str(exc), field="term") from exc

    rate = monthly_rate if monthly_rate is not None else policy.lookup_rate(customer_class, term)
    totals = compute_totals(principal, rate, term)

    amounts = split_amounts(totals.total_payable, term, remainder_policy)
    principals = _split_principal(amounts, totals.principal, totals.total_payable)
    cutoffs = cutoff_calendar.advance(start_date, term)
    lag = timedelta(days=disbursement_lag_days)

    return tuple(
        InstallmentDraft(
            installment_number=i + 1,
            amount=amounts[i],
            principal_amount=principals[i],
            interest_amount=amounts[i] - principals[i],
            cut_off_date=cutoffs[i],
            scheduled_date=cutoffs[i] + lag,
        )
        for i in range(term)
    )
