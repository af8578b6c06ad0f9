"""Module-level engine lifecycle and the session_scope() transaction boundary."""

from decimal import Decimal

import pytest
from sqlalchemy import func, inspect, select

import epp_batch  # noqa: F401  registers the batch tables
from epp_kernel.db import engine as db
from epp_kernel.domain.clock import DeterministicClock
from epp_kernel.models.order import OrderModel
from epp_kernel.services.order_service import OrderService

from tests.conftest import EMPLOYEE_ID


@pytest.fixture
def initialized_engine():
    db.init_engine_from_url("sqlite://")
    db.create_tables()
    yield db.get_engine()
    db.drop_tables()
    db.reset_engine()


def count_orders(session) -> int:
    return session.execute(select(func.count()).select_from(OrderModel)).scalar_one()


def test_uninitialized_engine_raises():
    db.reset_engine()
    with pytest.raises(RuntimeError):
        db.get_engine()
    with pytest.raises(RuntimeError):
        db.get_session()
    with pytest.raises(RuntimeError):
        db.get_session_factory()


def test_scope_commits(initialized_engine, rate_policies):
    with db.session_scope() as session:
        OrderService(session, rate_policies, DeterministicClock()).create_order(
            EMPLOYEE_ID, Decimal("1000"), "employee", 3,
        )

    with db.session_scope() as session:
        assert count_orders(session) == 1


def test_scope_rolls_back_on_error(initialized_engine, rate_policies):
    with pytest.raises(ZeroDivisionError):
        with db.session_scope() as session:
            OrderService(session, rate_policies, DeterministicClock()).create_order(
                EMPLOYEE_ID, Decimal("1000"), "employee", 3,
            )
            1 / 0

    with db.session_scope() as session:
        assert count_orders(session) == 0


def test_sqlite_savepoint_rolls_back_inner_work(initialized_engine, rate_policies):
    with db.session_scope() as session:
        orders = OrderService(session, rate_policies, DeterministicClock())
        orders.create_order(EMPLOYEE_ID, Decimal("1000"), "employee", 3)
        savepoint = session.begin_nested()
        orders.create_order(EMPLOYEE_ID, Decimal("2000"), "employee", 3)
        savepoint.rollback()

    with db.session_scope() as session:
        assert count_orders(session) == 1


def test_create_tables_includes_registered_batch_tables(initialized_engine):
    tables = set(inspect(initialized_engine).get_table_names())
    assert {"orders", "installments", "payroll_batches", "payroll_batch_items"} <= tables
