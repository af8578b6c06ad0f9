"""
Pytest fixtures for the EPP financing core test suite.

Provides:
- An in-memory SQLite database per test (savepoint-capable engine)
- A DeterministicClock pinned to 2024-01-01 12:00 UTC
- The bundled default configuration
- Service factories wired to the test session
- Captured structured (JSON) logs
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import UUID

import pytest
from sqlalchemy.orm import Session, sessionmaker

from epp_batch.gateway import StaticDeductionGateway
from epp_batch.orchestrator import BatchOrchestrator
from epp_config import get_active_config
from epp_kernel.db.base import Base
from epp_kernel.db.engine import build_engine
from epp_kernel.domain.approval import ApprovalDecision, StaticActorDirectory
from epp_kernel.domain.clock import DeterministicClock
from epp_kernel.domain.order import OrderStatus
from epp_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from epp_kernel.services.alert_service import AlertService
from epp_kernel.services.approval_service import ApprovalService
from epp_kernel.services.installment_service import InstallmentService
from epp_kernel.services.ledger_service import LedgerService
from epp_kernel.services.order_service import OrderService
from epp_kernel.services.schedule_service import ScheduleService
from epp_services.financing_orchestrator import FinancingOrchestrator

# Register every table on Base.metadata.
import epp_batch.models  # noqa: F401,E402
import epp_kernel.models  # noqa: F401,E402

FIXED_NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

# Fixed so that importing this module twice yields the same actors.
MANAGER_ID = UUID("11111111-1111-4111-8111-111111111111")
HR_ID = UUID("22222222-2222-4222-8222-222222222222")
FINANCE_ID = UUID("33333333-3333-4333-8333-333333333333")
EMPLOYEE_ID = UUID("44444444-4444-4444-8444-444444444444")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture epp_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger_service):
            ledger_service.record_loan(...)
            assert any(r["message"] == "ledger_entry_appended" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("epp_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    eng = build_engine("sqlite://")
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session(engine) -> Session:
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    sess = factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Time, configuration and collaborators
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def epp_config():
    return get_active_config()


@pytest.fixture
def rate_policies(epp_config):
    return epp_config.rate_policy_registry()


@pytest.fixture
def actor_directory() -> StaticActorDirectory:
    return StaticActorDirectory({
        MANAGER_ID: ("MANAGER",),
        HR_ID: ("HR",),
        FINANCE_ID: ("FINANCE",),
    })


@pytest.fixture
def gateway() -> StaticDeductionGateway:
    return StaticDeductionGateway()


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def order_service(session, rate_policies, deterministic_clock):
    return OrderService(session, rate_policies, deterministic_clock)


@pytest.fixture
def ledger_service(session, deterministic_clock):
    return LedgerService(session, deterministic_clock)


@pytest.fixture
def installment_service(session, order_service, ledger_service, deterministic_clock):
    return InstallmentService(session, order_service, ledger_service, deterministic_clock)


@pytest.fixture
def alert_service(session, deterministic_clock):
    return AlertService(session, deterministic_clock)


@pytest.fixture
def approval_service(session, order_service, actor_directory, deterministic_clock):
    return ApprovalService(session, order_service, actor_directory, deterministic_clock)


@pytest.fixture
def schedule_service(
    session, order_service, installment_service, ledger_service,
    rate_policies, epp_config, deterministic_clock,
):
    return ScheduleService(
        session,
        order_service,
        installment_service,
        ledger_service,
        rate_policies,
        epp_config.schedule.calendar(),
        deterministic_clock,
    )


@pytest.fixture
def batch_orchestrator(session, gateway, rate_policies, actor_directory, deterministic_clock):
    return BatchOrchestrator.from_session(
        session, gateway, rate_policies, actor_directory, clock=deterministic_clock,
    )


@pytest.fixture
def financing(session, epp_config, actor_directory, gateway, deterministic_clock):
    return FinancingOrchestrator(
        session, epp_config, actor_directory, gateway, deterministic_clock,
    )


# =============================================================================
# Scenario helpers
# =============================================================================


@pytest.fixture
def scheduled_order(financing):
    """
    A 10000 / employee / 6-month order approved by MANAGER and HR.

    Returns the ScheduleResult: five installments of 2016.66 and a last
    one of 2016.70, due on the 30th (clamped) of Jan..Jun 2024.
    """
    submission = financing.submit_order(EMPLOYEE_ID, Decimal("10000"), "employee", 6)
    manager_level, hr_level = submission.approvals
    financing.resolve_level(manager_level.id, ApprovalDecision.APPROVE, MANAGER_ID)
    resolution = financing.resolve_level(hr_level.id, ApprovalDecision.APPROVE, HR_ID)
    return resolution.schedule


@pytest.fixture
def make_scheduled_order(order_service, schedule_service):
    """Factory: create an order, approve it directly and materialize its schedule."""

    def _make(principal="10000", customer_class="employee", term=6, employee_id=EMPLOYEE_ID):
        order = order_service.create_order(employee_id, Decimal(principal), customer_class, term)
        order_service.transition(order_service.lock(order.id), OrderStatus.APPROVED)
        return schedule_service.create_schedule(order.id)

    return _make
