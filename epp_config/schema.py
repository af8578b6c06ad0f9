"""
EPP configuration schema.

Frozen dataclasses that the loader builds from YAML.  The policy objects
themselves (RatePolicy, ApprovalWorkflow, CutoffCalendar) are kernel
domain types; this module only groups them with the operational settings
of the batch and approval engines.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from epp_kernel.domain.approval import ApprovalWorkflow, EscalationPolicy, select_workflow
from epp_kernel.domain.calendar import CutoffCalendar, CutoffFrequency
from epp_kernel.domain.rate_policy import RatePolicy, RatePolicyRegistry
from epp_kernel.domain.schedule import RemainderPolicy
from epp_kernel.exceptions import ConfigurationError


@dataclass(frozen=True)
class ScheduleSettings:
    """Cutoff calendar and split rules for schedule generation."""

    cutoff_frequency: CutoffFrequency = CutoffFrequency.MONTHLY
    cutoff_days: tuple[int, ...] = (30,)
    disbursement_lag_days: int = 0
    remainder_policy: RemainderPolicy = RemainderPolicy.LAST_INSTALLMENT

    def calendar(self) -> CutoffCalendar:
        return CutoffCalendar(self.cutoff_frequency, self.cutoff_days)


@dataclass(frozen=True)
class PayrollSettings:
    max_retries: int = 3


@dataclass(frozen=True)
class ApprovalSettings:
    escalation_policy: EscalationPolicy = EscalationPolicy.AUTO_REJECT
    workflows: tuple[ApprovalWorkflow, ...] = ()


@dataclass(frozen=True)
class EppConfiguration:
    """The complete, validated configuration of the financing core."""

    config_id: str
    version: int
    currency: str
    rate_policies: tuple[RatePolicy, ...]
    schedule: ScheduleSettings
    payroll: PayrollSettings
    approval: ApprovalSettings
    checksum: str = ""

    def rate_policy_registry(self) -> RatePolicyRegistry:
        return RatePolicyRegistry(self.rate_policies)

    def workflow(self, name: str) -> ApprovalWorkflow:
        for workflow in self.approval.workflows:
            if workflow.name == name:
                return workflow
        raise ConfigurationError(f"Unknown approval workflow: {name}", key="workflows")

    def workflow_for_amount(self, amount: Decimal) -> ApprovalWorkflow:
        return select_workflow(self.approval.workflows, amount)
