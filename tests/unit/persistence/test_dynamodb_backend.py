"""Unit tests for the DynamoDB backends using moto."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import boto3
import pytest
from moto import mock_aws
from seed_dynamodb import create_tables, seed_concepts

from nomina.core.exceptions import PeriodStateError, PersistenceConflict, RecordNotFoundError
from nomina.models.inputs import (
    AttendanceRecord,
    AttendanceStatus,
    Employee,
    EmployeeBenefit,
    EmployeeStatus,
    LeaveRequest,
)
from nomina.models.payroll import Payroll, PayrollDetail, PayrollStatus, payroll_id_for
from nomina.models.concept import ConceptType
from nomina.models.period import PeriodStatus
from nomina.persistence import dynamodb_backend
from nomina.persistence.dynamodb_backend import (
    DynamoDBConceptStore,
    DynamoDBInputSource,
    DynamoDBPayrollStore,
    DynamoDBPeriodStore,
)
from tests.fakes import MemoryCacheBackend, concept, november_period

TABLE_SUFFIX = "-test"
REGION = "us-east-1"
PERIOD = "2024-11"


# ---------- helpers ----------

def _payroll(employee_id: str = "1001", gross: str = "1000.00") -> Payroll:
    return Payroll(
        id=payroll_id_for(PERIOD, employee_id),
        employee_id=employee_id,
        payroll_period_id=PERIOD,
        gross_salary=Decimal(gross),
        total_earnings=Decimal(gross),
        net_salary=Decimal(gross),
        status=PayrollStatus.CALCULATED,
    )


def _detail(code: str, amount: str, employee_id: str = "1001") -> PayrollDetail:
    return PayrollDetail(
        payroll_id=payroll_id_for(PERIOD, employee_id),
        concept_code=code,
        concept_type=ConceptType.EARNING,
        amount=Decimal(amount),
        trace={"pass": "earnings", "variables": {"base_salary": "1000"}},
    )


# ---------- fixtures ----------

@pytest.fixture
def aws():
    with mock_aws():
        ddb = boto3.resource("dynamodb", region_name=REGION)
        create_tables(ddb, TABLE_SUFFIX)
        yield ddb


@pytest.fixture
def periods(aws):
    return DynamoDBPeriodStore(table_suffix=TABLE_SUFFIX, region=REGION)


@pytest.fixture
def payrolls(aws, periods):
    periods.create_period(november_period(status=PeriodStatus.PROCESSING))
    return DynamoDBPayrollStore(table_suffix=TABLE_SUFFIX, region=REGION)


@pytest.fixture
def inputs(aws):
    return DynamoDBInputSource(table_suffix=TABLE_SUFFIX, region=REGION)


# ---------- concepts ----------

class TestConceptStore:
    def test_reads_seeded_catalog(self, aws):
        count = seed_concepts(aws, TABLE_SUFFIX)
        store = DynamoDBConceptStore(table_suffix=TABLE_SUFFIX, region=REGION)
        concepts = {c.code: c for c in store.list_concepts()}
        assert len(concepts) == count
        assert concepts["SALUD_PATRONAL"].is_employer_contribution is True
        assert concepts["SALUD_EMPLEADO"].formula == "taxable_income * 0.04"

    def test_caches_catalog(self, aws):
        cache = MemoryCacheBackend()
        store = DynamoDBConceptStore(table_suffix=TABLE_SUFFIX, region=REGION, cache=cache)
        store.put_concept(concept("BONO", "earning", "fixed", default_value=Decimal("50000")))

        first = store.list_concepts()
        assert cache.get(DynamoDBConceptStore.CACHE_KEY) is not None

        aws.Table(f"nomina-payroll-concepts{TABLE_SUFFIX}").delete_item(Key={"PK": "CATALOG", "SK": "CONCEPT#BONO"})
        assert store.list_concepts() == first

    def test_put_invalidates_cache(self, aws):
        cache = MemoryCacheBackend()
        store = DynamoDBConceptStore(table_suffix=TABLE_SUFFIX, region=REGION, cache=cache)
        store.list_concepts()
        store.put_concept(concept("BONO", "earning", "fixed", default_value=Decimal("50000")))
        assert cache.get(DynamoDBConceptStore.CACHE_KEY) is None
        assert [c.code for c in store.list_concepts()] == ["BONO"]


# ---------- periods ----------

class TestPeriodStore:
    def test_create_and_get(self, periods):
        periods.create_period(november_period())
        period = periods.get_period(PERIOD)
        assert period.status is PeriodStatus.DRAFT
        assert period.start_date == date(2024, 11, 1)
        assert period.total_net == Decimal("0")

    def test_duplicate(self, periods):
        periods.create_period(november_period())
        with pytest.raises(PersistenceConflict):
            periods.create_period(november_period())

    def test_missing(self, periods):
        with pytest.raises(RecordNotFoundError):
            periods.get_period("1999-01")

    def test_transition_bumps_revision(self, periods):
        periods.create_period(november_period())
        updated = periods.transition(PERIOD, PeriodStatus.DRAFT, 0, {
            "status": PeriodStatus.PROCESSING, "total_net": Decimal("2318946.67"),
        })
        assert updated.revision == 1
        stored = periods.get_period(PERIOD)
        assert stored.status is PeriodStatus.PROCESSING
        assert stored.total_net == Decimal("2318946.67")

    def test_stale_transition_loses(self, periods):
        periods.create_period(november_period())
        periods.transition(PERIOD, PeriodStatus.DRAFT, 0, {"status": PeriodStatus.PROCESSING})
        with pytest.raises(PeriodStateError):
            periods.transition(PERIOD, PeriodStatus.DRAFT, 0, {"status": PeriodStatus.PROCESSING})


# ---------- payrolls ----------

class TestPayrollStore:
    def test_first_write(self, payrolls):
        saved = payrolls.replace_payroll(_payroll(), [_detail("SALARIO_BASE", "1000.00")], None)
        assert saved.revision == 1
        assert payrolls.get_payroll(PERIOD, "1001") == saved
        [detail] = payrolls.list_details(saved.id)
        assert detail.amount == Decimal("1000.00")
        assert detail.trace["variables"] == {"base_salary": "1000"}

    def test_replace_drops_stale_details(self, payrolls):
        first = payrolls.replace_payroll(
            _payroll(), [_detail("SALARIO_BASE", "1000.00"), _detail("BONIFICACION", "50.00")], None,
        )
        second = payrolls.replace_payroll(_payroll(gross="1000.00"), [_detail("SALARIO_BASE", "1000.00")],
                                          first.revision)
        assert second.revision == 2
        assert [d.concept_code for d in payrolls.list_details(second.id)] == ["SALARIO_BASE"]

    def test_stale_revision_conflicts(self, payrolls):
        first = payrolls.replace_payroll(_payroll(), [_detail("SALARIO_BASE", "1000.00")], None)
        payrolls.replace_payroll(_payroll(gross="1100.00"), [_detail("SALARIO_BASE", "1100.00")], first.revision)
        with pytest.raises(PersistenceConflict):
            payrolls.replace_payroll(_payroll(gross="1200.00"), [_detail("SALARIO_BASE", "1200.00")],
                                     first.revision)
        assert payrolls.get_payroll(PERIOD, "1001").gross_salary == Decimal("1100.00")

    def test_double_insert_conflicts(self, payrolls):
        payrolls.replace_payroll(_payroll(), [], None)
        with pytest.raises(PersistenceConflict):
            payrolls.replace_payroll(_payroll(), [], None)

    def test_closed_period_blocks_writes(self, payrolls, periods):
        saved = payrolls.replace_payroll(_payroll(), [_detail("SALARIO_BASE", "1000.00")], None)
        period = periods.get_period(PERIOD)
        periods.transition(PERIOD, PeriodStatus.PROCESSING, period.revision, {"status": PeriodStatus.APPROVED})
        with pytest.raises(PeriodStateError):
            payrolls.replace_payroll(_payroll(gross="9.00"), [_detail("SALARIO_BASE", "9.00")], saved.revision)
        assert payrolls.get_payroll(PERIOD, "1001") == saved

    def test_locked_payroll_blocks_writes(self, payrolls):
        saved = payrolls.replace_payroll(_payroll(), [], None)
        approved = payrolls.set_payroll_status(PERIOD, "1001", frozenset({PayrollStatus.CALCULATED}),
                                               {"status": PayrollStatus.APPROVED, "approved_by": "ana"})
        assert approved.revision == saved.revision + 1
        with pytest.raises(PeriodStateError):
            payrolls.replace_payroll(_payroll(gross="9.00"), [], approved.revision)

    def test_status_change_checks_current_status(self, payrolls):
        payrolls.replace_payroll(_payroll(), [], None)
        with pytest.raises(PeriodStateError):
            payrolls.set_payroll_status(PERIOD, "1001", frozenset({PayrollStatus.APPROVED}),
                                        {"status": PayrollStatus.PAID})
        with pytest.raises(RecordNotFoundError):
            payrolls.set_payroll_status(PERIOD, "9999", frozenset({PayrollStatus.CALCULATED}),
                                        {"status": PayrollStatus.APPROVED})

    def test_list_payrolls_sorted(self, payrolls):
        for emp in ("1003", "1001", "1002"):
            payrolls.replace_payroll(_payroll(emp), [], None)
        assert [p.employee_id for p in payrolls.list_payrolls(PERIOD)] == ["1001", "1002", "1003"]

    def test_writes_advance_period_revision(self, payrolls, periods):
        before = periods.get_period(PERIOD).revision
        payrolls.replace_payroll(_payroll(), [_detail("SALARIO_BASE", "1000.00")], None)
        payrolls.set_payroll_status(PERIOD, "1001", frozenset({PayrollStatus.CALCULATED}),
                                    {"status": PayrollStatus.REJECTED, "notes": "typo"})
        assert periods.get_period(PERIOD).revision == before + 2
        with pytest.raises(PeriodStateError):
            periods.transition(PERIOD, PeriodStatus.PROCESSING, before, {"total_net": Decimal("1000.00")})

    def test_status_change_refused_once_period_approved(self, payrolls, periods):
        saved = payrolls.replace_payroll(_payroll(), [], None)
        period = periods.get_period(PERIOD)
        periods.transition(PERIOD, PeriodStatus.PROCESSING, period.revision, {"status": PeriodStatus.APPROVED})
        with pytest.raises(PeriodStateError, match="immutable"):
            payrolls.set_payroll_status(PERIOD, "1001", frozenset({PayrollStatus.CALCULATED}),
                                        {"status": PayrollStatus.DRAFT, "notes": "late failure"})
        assert payrolls.get_payroll(PERIOD, "1001") == saved


class TestSettlePeriod:
    def test_moves_period_and_matching_rows(self, payrolls, periods):
        payrolls.replace_payroll(_payroll("1001"), [], None)
        payrolls.replace_payroll(_payroll("1002"), [], None)
        payrolls.set_payroll_status(PERIOD, "1002", frozenset({PayrollStatus.CALCULATED}),
                                    {"status": PayrollStatus.REJECTED})
        revision = periods.get_period(PERIOD).revision
        settled = payrolls.settle_period(
            PERIOD, PeriodStatus.PROCESSING, revision,
            {"status": PeriodStatus.APPROVED, "approved_by": "ana", "total_employees": 2},
            PayrollStatus.CALCULATED, {"status": PayrollStatus.APPROVED, "approved_by": "ana"},
        )
        stored = periods.get_period(PERIOD)
        assert (stored.status, stored.revision, stored.total_employees) == (PeriodStatus.APPROVED, revision + 1, 2)
        assert payrolls.get_payroll(PERIOD, "1001").approved_by == "ana"
        assert payrolls.get_payroll(PERIOD, "1002").status is PayrollStatus.REJECTED

    def test_stale_revision_changes_nothing(self, payrolls, periods):
        stale = periods.get_period(PERIOD).revision
        saved = payrolls.replace_payroll(_payroll(), [], None)
        with pytest.raises(PeriodStateError):
            payrolls.settle_period(PERIOD, PeriodStatus.PROCESSING, stale, {"status": PeriodStatus.APPROVED},
                                   PayrollStatus.CALCULATED, {"status": PayrollStatus.APPROVED})
        assert periods.get_period(PERIOD).status is PeriodStatus.PROCESSING
        assert payrolls.get_payroll(PERIOD, "1001") == saved

    def test_large_periods_settle_in_batches(self, payrolls, periods, monkeypatch):
        monkeypatch.setattr(dynamodb_backend, "TRANSACTION_LIMIT", 3)
        employees = [f"10{n:02d}" for n in range(5)]
        for emp in employees:
            payrolls.replace_payroll(_payroll(emp), [], None)
        revision = periods.get_period(PERIOD).revision
        payrolls.settle_period(PERIOD, PeriodStatus.PROCESSING, revision, {"status": PeriodStatus.APPROVED},
                               PayrollStatus.CALCULATED, {"status": PayrollStatus.APPROVED})
        assert {p.status for p in payrolls.list_payrolls(PERIOD)} == {PayrollStatus.APPROVED}
        assert periods.get_period(PERIOD).status is PeriodStatus.APPROVED


# ---------- HR inputs ----------

class TestInputSource:
    def test_roster_filters_inactive_and_out_of_range(self, inputs):
        inputs.put_employee(Employee(id="1002", base_salary=Decimal("3000000")))
        inputs.put_employee(Employee(id="1001", base_salary=Decimal("2400000")))
        inputs.put_employee(Employee(id="1009", base_salary=Decimal("1"), status=EmployeeStatus.INACTIVE))
        inputs.put_employee(Employee(id="1010", base_salary=Decimal("1"), hire_date=date(2025, 1, 1)))
        roster = inputs.active_employees(november_period())
        assert [e.id for e in roster] == ["1001", "1002"]
        assert roster[0].base_salary == Decimal("2400000")

    def test_attendance_by_date_range(self, inputs):
        for day in (date(2024, 10, 31), date(2024, 11, 1), date(2024, 11, 30), date(2024, 12, 1)):
            inputs.put_attendance(AttendanceRecord(employee_id="1001", date=day, worked_hours=Decimal("8"),
                                                   status=AttendanceStatus.PRESENT))
        rows = inputs.attendance("1001", date(2024, 11, 1), date(2024, 11, 30))
        assert [r.date for r in rows] == [date(2024, 11, 1), date(2024, 11, 30)]
        assert rows[0].worked_hours == Decimal("8")

    def test_attendance_follows_pagination(self, inputs, monkeypatch):
        for day in range(1, 6):
            inputs.put_attendance(AttendanceRecord(employee_id="1001", date=date(2024, 11, day),
                                                   worked_hours=Decimal("8"), status=AttendanceStatus.PRESENT))
        table = inputs._table(dynamodb_backend.HR_INPUTS_TABLE)
        pages = []

        class OneItemPerPage:
            def query(self, **kwargs):
                resp = table.query(Limit=1, **kwargs)
                pages.append(resp)
                return resp

        monkeypatch.setattr(inputs, "_table", lambda base: OneItemPerPage())
        rows = inputs.attendance("1001", date(2024, 11, 1), date(2024, 11, 30))
        assert [r.date.day for r in rows] == [1, 2, 3, 4, 5]
        assert len(pages) > 1

    def test_benefits_and_leaves(self, inputs):
        inputs.put_benefit(EmployeeBenefit(id="b1", employee_id="1001", concept_code="BONIFICACION",
                                           amount=Decimal("500000"), start_date=date(2024, 1, 1)))
        inputs.put_leave(LeaveRequest(id="l1", employee_id="1001", start_date=date(2024, 11, 11),
                                      end_date=date(2024, 11, 12), is_paid=False))
        inputs.put_leave(LeaveRequest(id="l2", employee_id="1001", start_date=date(2024, 9, 1),
                                      end_date=date(2024, 9, 2)))
        assert [b.amount for b in inputs.benefits("1001")] == [Decimal("500000")]
        assert [lv.id for lv in inputs.leaves("1001", date(2024, 11, 1), date(2024, 11, 30))] == ["l1"]
        assert inputs.benefits("1002") == []
