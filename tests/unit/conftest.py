"""Shared fixtures for unit tests: the seeded catalog over in-memory stores."""

from __future__ import annotations

import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from nomina.core.config import AppSettings, PayrollConfig
from nomina.engine.formula import default_functions
from nomina.engine.income_tax import IncomeTaxTable
from nomina.engine.period_manager import PeriodManager
from nomina.engine.registry import ConceptRegistry
from nomina.models.inputs import Employee
from tests.fakes import (
    MemoryConceptStore,
    MemoryInputSource,
    MemoryPayrollStore,
    MemoryPeriodStore,
    attendance_for,
    november_period,
)

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent / "scripts"))

from seed_dynamodb import load_catalog  # noqa: E402


@pytest.fixture
def catalog():
    return load_catalog()


@pytest.fixture
def functions():
    return default_functions(IncomeTaxTable.from_config(AppSettings().income_tax))


@pytest.fixture
def registry(catalog, functions):
    return ConceptRegistry.load(catalog, functions)


@pytest.fixture
def settings():
    return AppSettings(payroll=PayrollConfig(max_workers=4, max_retries=3))


@pytest.fixture
def period_store():
    return MemoryPeriodStore()


@pytest.fixture
def payroll_store(period_store):
    return MemoryPayrollStore(period_store)


@pytest.fixture
def inputs():
    source = MemoryInputSource()
    for emp_id, salary in (("1001", "2400000"), ("1002", "3000000"), ("1003", "1300000")):
        source.add_employee(Employee(id=emp_id, base_salary=Decimal(salary), hire_date=date(2020, 1, 1)))
        overtime = [(4, "10", True)] if emp_id == "1001" else []
        source.add_attendance(*attendance_for(emp_id, date(2024, 11, 1), 30, overtime=overtime))
    return source


@pytest.fixture
def manager(catalog, period_store, payroll_store, inputs, settings):
    store = MemoryConceptStore(catalog)
    mgr = PeriodManager(store, period_store, payroll_store, inputs, settings=settings)
    period = november_period()
    mgr.create_period(period.id, period.start_date, period.end_date, period.pay_date)
    return mgr
