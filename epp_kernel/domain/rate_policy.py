"""
Rate/term policy (``epp_kernel.domain.rate_policy``).

Responsibility
--------------
Per-customer-class monthly interest rates, the set of enabled installment
terms, credit-score thresholds and the loan-to-income ceiling.  Pure
lookups over immutable configuration.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Policies are
built by ``epp_config`` from YAML and shared read-only by every service.

Invariants enforced
-------------------
* Policies are frozen.  A change is a new ``version`` with a later
  ``effective_from``; orders snapshot the version in force when they
  were created, so changes never apply retroactively.
* A per-term tier for a customer class wins over the class base rate.

Failure modes
-------------
* ``ConfigurationError`` -- no rate for the customer class, term not
  enabled, unknown version, or no version effective at a date.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Mapping

from epp_kernel.exceptions import ConfigurationError


class CustomerClass(str, Enum):
    """Pricing class of the financed customer."""

    EMPLOYEE = "employee"
    RETAILER = "retailer"
    WHOLESALER = "wholesaler"
    REGULAR = "regular"


class CreditDecision(str, Enum):
    """Outcome of credit-score classification."""

    AUTO_APPROVE = "AUTO_APPROVE"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    AUTO_REJECT = "AUTO_REJECT"


@dataclass(frozen=True)
class RatePolicy:
    """One immutable version of the rate/term policy.

    ``monthly_rates`` maps customer class to the base monthly rate.
    ``term_rates`` optionally overrides the rate per (class, term).
    Credit scores ``>= auto_approve_score`` are auto-approved, scores
    ``<= auto_reject_score`` are auto-rejected, anything in between goes to
    manual review.
    """

    version: int
    effective_from: date
    monthly_rates: Mapping[CustomerClass, Decimal]
    enabled_terms: frozenset[int]
    auto_approve_score: int
    auto_reject_score: int
    max_loan_to_income: Decimal
    term_rates: Mapping[CustomerClass, Mapping[int, Decimal]] = field(
        default_factory=dict,
    )

    def __post_init__(self) -> None:
        if not self.enabled_terms:
            raise ConfigurationError(
                f"Rate policy v{self.version} enables no terms", key="enabled_terms",
            )
        if any(t <= 0 for t in self.enabled_terms):
            raise ConfigurationError(
                f"Rate policy v{self.version} has a non-positive term",
                key="enabled_terms",
            )
        if self.auto_reject_score >= self.auto_approve_score:
            raise ConfigurationError(
                f"Rate policy v{self.version}: auto_reject_score must be below "
                "auto_approve_score",
                key="credit_score",
            )
        for cls, rate in self.monthly_rates.items():
            if rate < 0:
                raise ConfigurationError(
                    f"Rate policy v{self.version}: negative rate for {cls.value}",
                    key="monthly_rates",
                )

    def lookup_rate(self, customer_class: CustomerClass | str, term: int | None = None) -> Decimal:
        """Return the monthly rate for the class (and term, if tiered)."""
        cls = coerce_customer_class(customer_class)
        if term is not None:
            tiers = self.term_rates.get(cls)
            if tiers and term in tiers:
                return tiers[term]
        try:
            return self.monthly_rates[cls]
        except KeyError:
            raise ConfigurationError(
                f"No rate configured for customer class {cls.value} "
                f"in rate policy v{self.version}",
                key="monthly_rates",
            ) from None

    def is_term_allowed(self, term: int) -> bool:
        return term in self.enabled_terms

    def require_term(self, term: int) -> None:
        if not self.is_term_allowed(term):
            raise ConfigurationError(
                f"Term {term} is not enabled in rate policy v{self.version} "
                f"(enabled: {sorted(self.enabled_terms)})",
                key="enabled_terms",
            )

    def classify_credit_score(self, score: int) -> CreditDecision:
        if score >= self.auto_approve_score:
            return CreditDecision.AUTO_APPROVE
        if score <= self.auto_reject_score:
            return CreditDecision.AUTO_REJECT
        return CreditDecision.MANUAL_REVIEW

    def within_loan_to_income(
        self, monthly_installment: Decimal, monthly_income: Decimal,
    ) -> bool:
        """True when the installment stays within the loan-to-income ceiling."""
        if monthly_income <= 0:
            return False
        return monthly_installment / monthly_income <= self.max_loan_to_income


class RatePolicyRegistry:
    """All configured policy versions, resolvable by date or version."""

    def __init__(self, policies: tuple[RatePolicy, ...] | list[RatePolicy]):
        if not policies:
            raise ConfigurationError("At least one rate policy is required")
        ordered = sorted(policies, key=lambda p: p.effective_from)
        versions = [p.version for p in ordered]
        if len(set(versions)) != len(versions):
            raise ConfigurationError("Duplicate rate policy versions", key="version")
        self._policies: tuple[RatePolicy, ...] = tuple(ordered)
        self._by_version = {p.version: p for p in ordered}

    @property
    def policies(self) -> tuple[RatePolicy, ...]:
        return self._policies

    def active(self, as_of: date) -> RatePolicy:
        """Latest version whose effective_from is on or before ``as_of``."""
        current: RatePolicy | None = None
        for policy in self._policies:
            if policy.effective_from <= as_of:
                current = policy
        if current is None:
            raise ConfigurationError(f"No rate policy effective on {as_of.isoformat()}")
        return current

    def get(self, version: int) -> RatePolicy:
        try:
            return self._by_version[version]
        except KeyError:
            raise ConfigurationError(
                f"Unknown rate policy version: {version}", key="version",
            ) from None


def coerce_customer_class(customer_class: CustomerClass | str) -> CustomerClass:
    if isinstance(customer_class, CustomerClass):
        return customer_class
    try:
        return CustomerClass(str(customer_class).lower())
    except ValueError:
        raise ConfigurationError(
            f"Unknown customer class: {customer_class}", key="customer_class",
        ) from None
