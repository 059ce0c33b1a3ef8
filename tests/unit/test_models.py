"""Tests for model validation and status rules."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from nomina.models.concept import ConceptType, EvaluationPass
from nomina.models.inputs import LeaveRequest
from nomina.models.payroll import Payroll, PayrollStatus, payroll_id_for
from nomina.models.period import PERIOD_TRANSITIONS, PayrollPeriod, PeriodStatus
from nomina.models.results import EmployeeFailure, RunResult
from tests.fakes import concept, november_period


class TestPeriod:
    def test_duration_and_containment(self):
        period = november_period()
        assert period.duration_days == 30
        assert period.contains(date(2024, 11, 30))
        assert not period.contains(date(2024, 12, 1))
        assert period.overlaps(date(2024, 10, 1), None)
        assert not period.overlaps(date(2024, 10, 1), date(2024, 10, 31))

    def test_end_before_start(self):
        with pytest.raises(ValidationError):
            PayrollPeriod(id="p", start_date=date(2024, 12, 1), end_date=date(2024, 11, 30), pay_date=date(2024, 12, 1))

    def test_lifecycle_is_forward_only(self):
        assert PERIOD_TRANSITIONS[PeriodStatus.APPROVED] == frozenset({PeriodStatus.PAID})
        assert PERIOD_TRANSITIONS[PeriodStatus.CLOSED] == frozenset()
        assert PeriodStatus.PROCESSING.allows_recompute
        assert not PeriodStatus.APPROVED.allows_recompute


class TestConcept:
    def test_formula_required(self):
        with pytest.raises(ValidationError):
            concept("X", "earning", "formula")

    def test_min_above_max(self):
        with pytest.raises(ValidationError):
            concept("X", "earning", "fixed", minimum_amount=Decimal("10"), maximum_amount=Decimal("1"))

    @pytest.mark.parametrize("type_, employer, expected_side, expected_pass", [
        ("earning", False, False, EvaluationPass.EARNINGS),
        ("deduction", False, False, EvaluationPass.DEDUCTIONS),
        ("deduction", True, True, EvaluationPass.DEDUCTIONS),
        ("tax", False, False, EvaluationPass.DEDUCTIONS),
        ("benefit", False, True, EvaluationPass.DEDUCTIONS),
    ])
    def test_side_and_pass(self, type_, employer, expected_side, expected_pass):
        c = concept("X", type_, "fixed", default_value=Decimal("1"), is_employer_contribution=employer)
        assert c.type is ConceptType(type_)
        assert c.is_employer_side is expected_side
        assert c.evaluation_pass is expected_pass


class TestPayroll:
    def test_same_result_ignores_timestamp_and_revision(self):
        a = Payroll(id=payroll_id_for("p", "e"), employee_id="e", payroll_period_id="p",
                    net_salary=Decimal("10.00"), revision=1)
        b = a.model_copy(update={"revision": 4, "calculated_at": datetime.now(timezone.utc)})
        assert a.same_result(b)
        assert not a.same_result(b.model_copy(update={"net_salary": Decimal("10.01")}))

    def test_locked_statuses(self):
        assert {s for s in PayrollStatus if s.is_locked} == {PayrollStatus.APPROVED, PayrollStatus.PAID}


def test_leave_dates_validated():
    with pytest.raises(ValidationError):
        LeaveRequest(employee_id="1", start_date=date(2024, 11, 2), end_date=date(2024, 11, 1))


def test_run_result_ok():
    assert RunResult(period_id="p").ok
    failed = RunResult(period_id="p", failed=[EmployeeFailure(employee_id="1", error_kind="X", message="m")])
    assert not failed.ok
    assert not RunResult(period_id="p", cancelled=True).ok
