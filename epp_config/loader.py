"""
Configuration Loader (``epp_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen dataclasses
of ``epp_config.schema`` and the kernel policy types.  The single public
entry point for runtime config is ``epp_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError``; no silent defaults
  for required fields.
* Semantic errors (no enabled terms, negative rates, empty workflows)
  raise ``ConfigurationError`` from the kernel policy constructors.
* Money and rates are parsed through ``str`` into ``Decimal``, never float.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from epp_config.schema import (
    ApprovalSettings,
    EppConfiguration,
    PayrollSettings,
    ScheduleSettings,
)
from epp_kernel.db.types import validate_currency
from epp_kernel.domain.approval import (
    ApprovalLevelTemplate,
    ApprovalWorkflow,
    EscalationPolicy,
)
from epp_kernel.domain.calendar import CutoffFrequency
from epp_kernel.domain.rate_policy import RatePolicy, coerce_customer_class
from epp_kernel.domain.schedule import RemainderPolicy


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def parse_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Cannot parse decimal from {value!r}") from None


def parse_optional_decimal(value: Any) -> Decimal | None:
    return None if value is None else parse_decimal(value)


def parse_rate_policy(data: dict[str, Any]) -> RatePolicy:
    """Parse one rate policy version (see ``sets/default.yaml``)."""
    monthly_rates = {
        coerce_customer_class(cls): parse_decimal(rate)
        for cls, rate in data["monthly_rates"].items()
    }
    term_rates = {
        coerce_customer_class(cls): {int(term): parse_decimal(rate) for term, rate in tiers.items()}
        for cls, tiers in (data.get("term_rates") or {}).items()
    }
    credit = data["credit_score"]
    return RatePolicy(
        version=int(data["version"]),
        effective_from=parse_date(data["effective_from"]),
        monthly_rates=monthly_rates,
        enabled_terms=frozenset(int(t) for t in data["enabled_terms"]),
        auto_approve_score=int(credit["auto_approve"]),
        auto_reject_score=int(credit["auto_reject"]),
        max_loan_to_income=parse_decimal(data["max_loan_to_income"]),
        term_rates=term_rates,
    )


def parse_level(data: dict[str, Any]) -> ApprovalLevelTemplate:
    timeout = data.get("timeout_days")
    return ApprovalLevelTemplate(
        approver_role=str(data["approver_role"]),
        is_required=bool(data.get("is_required", True)),
        auto_approve_under=parse_optional_decimal(data.get("auto_approve_under")),
        timeout_days=int(timeout) if timeout is not None else None,
    )


def parse_workflow(data: dict[str, Any]) -> ApprovalWorkflow:
    return ApprovalWorkflow(
        name=data["name"],
        levels=tuple(parse_level(level) for level in data.get("levels") or ()),
        min_order_amount=parse_optional_decimal(data.get("min_order_amount")),
        max_order_amount=parse_optional_decimal(data.get("max_order_amount")),
        requires_installment=bool(data.get("requires_installment", True)),
    )


def parse_schedule_settings(data: dict[str, Any]) -> ScheduleSettings:
    settings = ScheduleSettings(
        cutoff_frequency=CutoffFrequency(data.get("cutoff_frequency", "MONTHLY")),
        cutoff_days=tuple(int(d) for d in data.get("cutoff_days", (30,))),
        disbursement_lag_days=int(data.get("disbursement_lag_days", 0)),
        remainder_policy=RemainderPolicy(data.get("remainder_policy", "LAST_INSTALLMENT")),
    )
    # Validates the calendar eagerly.
    settings.calendar()
    return settings


def parse_payroll_settings(data: dict[str, Any]) -> PayrollSettings:
    max_retries = int(data.get("max_retries", 3))
    if max_retries < 0:
        raise ValueError(f"payroll.max_retries must be >= 0, got {max_retries}")
    return PayrollSettings(max_retries=max_retries)


def parse_approval_settings(data: dict[str, Any]) -> ApprovalSettings:
    return ApprovalSettings(
        escalation_policy=EscalationPolicy(data.get("escalation_policy", "AUTO_REJECT")),
        workflows=tuple(parse_workflow(w) for w in data.get("workflows") or ()),
    )


def parse_configuration(data: dict[str, Any]) -> EppConfiguration:
    policies = tuple(parse_rate_policy(p) for p in data["rate_policies"])
    if not policies:
        raise ValueError("At least one rate policy is required")
    config = EppConfiguration(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        currency=validate_currency(str(data.get("currency", "PHP"))),
        rate_policies=policies,
        schedule=parse_schedule_settings(data.get("schedule") or {}),
        payroll=parse_payroll_settings(data.get("payroll") or {}),
        approval=parse_approval_settings(data.get("approval") or {}),
        checksum=compute_checksum(data),
    )
    # Duplicate versions are a registry error; surface them at load time.
    config.rate_policy_registry()
    return config


def load_configuration(path: Path) -> EppConfiguration:
    return parse_configuration(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization (deterministic)."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
