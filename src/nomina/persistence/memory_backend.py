"""In-memory backends for unit tests and local runs.

The period and payroll stores share one lock so that a payroll write and a
period status change never interleave, mirroring the transactional guarantees
of the DynamoDB backend.
"""

from __future__ import annotations

import threading
from datetime import date
from typing import Any, Optional

from nomina.core.exceptions import (
    InvalidInputError,
    PeriodStateError,
    PersistenceConflict,
    RecordNotFoundError,
)
from nomina.models.concept import PayrollConcept
from nomina.models.inputs import (
    AttendanceRecord,
    Employee,
    EmployeeBenefit,
    EmployeeStatus,
    LeaveRequest,
)
from nomina.models.payroll import Payroll, PayrollDetail, PayrollStatus
from nomina.models.period import PayrollPeriod, PeriodStatus


class MemoryConceptStore:
    """Dict-backed IConceptStore."""

    def __init__(self, concepts: list[PayrollConcept] | None = None) -> None:
        self._concepts: dict[str, PayrollConcept] = {}
        for concept in concepts or []:
            self.put_concept(concept)

    def list_concepts(self) -> list[PayrollConcept]:
        return list(self._concepts.values())

    def put_concept(self, concept: PayrollConcept) -> None:
        self._concepts[concept.code] = concept


class MemoryPeriodStore:
    """Dict-backed IPeriodStore with compare-and-swap transitions."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self._periods: dict[str, PayrollPeriod] = {}

    def get_period(self, period_id: str) -> PayrollPeriod:
        with self.lock:
            try:
                return self._periods[period_id]
            except KeyError:
                raise RecordNotFoundError(f"Payroll period {period_id!r} not found") from None

    def create_period(self, period: PayrollPeriod) -> PayrollPeriod:
        with self.lock:
            if period.id in self._periods:
                raise PersistenceConflict(f"Payroll period {period.id!r} already exists")
            self._periods[period.id] = period
            return period

    def transition(
        self,
        period_id: str,
        expected_status: PeriodStatus,
        expected_revision: int,
        changes: dict[str, Any],
    ) -> PayrollPeriod:
        with self.lock:
            current = self.get_period(period_id)
            if current.status is not expected_status or current.revision != expected_revision:
                raise PeriodStateError(
                    f"Period {period_id} is {current.status} at revision {current.revision}, "
                    f"expected {expected_status} at revision {expected_revision}"
                )
            updated = current.model_copy(update={**changes, "revision": current.revision + 1})
            self._periods[period_id] = updated
            return updated

    def bump_revision(self, period_id: str) -> PayrollPeriod:
        """Advance the revision after a payroll write; totals read earlier lose their CAS."""
        with self.lock:
            current = self.get_period(period_id)
            updated = current.model_copy(update={"revision": current.revision + 1})
            self._periods[period_id] = updated
            return updated


class MemoryPayrollStore:
    """Dict-backed IPayrollStore; one row per (period, employee)."""

    def __init__(self, period_store: MemoryPeriodStore) -> None:
        self._periods = period_store
        self._payrolls: dict[tuple[str, str], Payroll] = {}
        self._details: dict[str, dict[str, PayrollDetail]] = {}

    def get_payroll(self, period_id: str, employee_id: str) -> Optional[Payroll]:
        with self._periods.lock:
            return self._payrolls.get((period_id, employee_id))

    def list_payrolls(self, period_id: str) -> list[Payroll]:
        with self._periods.lock:
            rows = [p for (pid, _), p in self._payrolls.items() if pid == period_id]
        return sorted(rows, key=lambda p: p.employee_id)

    def list_details(self, payroll_id: str) -> list[PayrollDetail]:
        with self._periods.lock:
            details = list(self._details.get(payroll_id, {}).values())
        return sorted(details, key=lambda d: (d.display_order, d.concept_code))

    def replace_payroll(
        self,
        payroll: Payroll,
        details: list[PayrollDetail],
        expected_revision: Optional[int],
    ) -> Payroll:
        by_code: dict[str, PayrollDetail] = {}
        for detail in details:
            if detail.payroll_id != payroll.id:
                raise InvalidInputError(f"Detail {detail.concept_code} belongs to {detail.payroll_id}, not {payroll.id}")
            if detail.concept_code in by_code:
                raise InvalidInputError(f"Duplicate detail {detail.concept_code} for payroll {payroll.id}")
            by_code[detail.concept_code] = detail

        with self._periods.lock:
            period = self._periods.get_period(payroll.payroll_period_id)
            if not period.status.allows_recompute:
                raise PeriodStateError(f"Period {period.id} is {period.status}; payrolls are immutable")

            key = (payroll.payroll_period_id, payroll.employee_id)
            current = self._payrolls.get(key)
            if current is None and expected_revision is not None:
                raise PersistenceConflict(f"Payroll {payroll.id} vanished before write")
            if current is not None and current.revision != expected_revision:
                raise PersistenceConflict(
                    f"Payroll {payroll.id} is at revision {current.revision}, expected {expected_revision}"
                )
            if current is not None and current.status.is_locked:
                raise PeriodStateError(f"Payroll {payroll.id} is {current.status}")

            saved = payroll.model_copy(update={"revision": (current.revision if current else 0) + 1})
            self._payrolls[key] = saved
            self._details[payroll.id] = by_code
            self._periods.bump_revision(period.id)
            return saved

    def set_payroll_status(
        self,
        period_id: str,
        employee_id: str,
        expected: frozenset[PayrollStatus],
        changes: dict[str, Any],
    ) -> Payroll:
        with self._periods.lock:
            period = self._periods.get_period(period_id)
            if not period.status.allows_recompute:
                raise PeriodStateError(f"Period {period_id} is {period.status}; payrolls are immutable")
            current = self._payrolls.get((period_id, employee_id))
            if current is None:
                raise RecordNotFoundError(f"No payroll for employee {employee_id} in period {period_id}")
            if current.status not in expected:
                raise PeriodStateError(f"Payroll {current.id} is {current.status}")
            updated = current.model_copy(update={**changes, "revision": current.revision + 1})
            self._payrolls[(period_id, employee_id)] = updated
            self._periods.bump_revision(period_id)
            return updated

    def settle_period(
        self,
        period_id: str,
        expected_status: PeriodStatus,
        expected_revision: int,
        changes: dict[str, Any],
        from_status: PayrollStatus,
        payroll_changes: dict[str, Any],
    ) -> PayrollPeriod:
        with self._periods.lock:
            current = self._periods.get_period(period_id)
            if current.status is not expected_status or current.revision != expected_revision:
                raise PeriodStateError(
                    f"Period {period_id} is {current.status} at revision {current.revision}, "
                    f"expected {expected_status} at revision {expected_revision}"
                )
            for key, payroll in list(self._payrolls.items()):
                if key[0] == period_id and payroll.status is from_status:
                    self._payrolls[key] = payroll.model_copy(
                        update={**payroll_changes, "revision": payroll.revision + 1}
                    )
            return self._periods.transition(period_id, expected_status, expected_revision, changes)


class MemoryInputSource:
    """Dict-backed IInputSource holding roster, attendance, benefits and leave."""

    def __init__(self) -> None:
        self._employees: dict[str, Employee] = {}
        self._attendance: list[AttendanceRecord] = []
        self._benefits: list[EmployeeBenefit] = []
        self._leaves: list[LeaveRequest] = []

    def add_employee(self, employee: Employee) -> None:
        self._employees[employee.id] = employee

    def add_attendance(self, *records: AttendanceRecord) -> None:
        self._attendance.extend(records)

    def add_benefit(self, *benefits: EmployeeBenefit) -> None:
        self._benefits.extend(benefits)

    def add_leave(self, *leaves: LeaveRequest) -> None:
        self._leaves.extend(leaves)

    def active_employees(self, period: PayrollPeriod) -> list[Employee]:
        return sorted(
            (
                e for e in self._employees.values()
                if e.status is EmployeeStatus.ACTIVE
                and (e.hire_date is None or e.hire_date <= period.end_date)
                and (e.termination_date is None or e.termination_date >= period.start_date)
            ),
            key=lambda e: e.id,
        )

    def attendance(self, employee_id: str, start: date, end: date) -> list[AttendanceRecord]:
        return [a for a in self._attendance if a.employee_id == employee_id and start <= a.date <= end]

    def benefits(self, employee_id: str) -> list[EmployeeBenefit]:
        return [b for b in self._benefits if b.employee_id == employee_id]

    def leaves(self, employee_id: str, start: date, end: date) -> list[LeaveRequest]:
        return [
            lv for lv in self._leaves
            if lv.employee_id == employee_id and lv.start_date <= end and lv.end_date >= start
        ]


class MemoryCacheBackend:
    """Dict-backed ICacheBackend for unit tests."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def setex(self, key: str, ttl: int, value: str) -> None:
        self._store[key] = value

    def delete(self, key: str) -> None:
        self._store.pop(key, None)
