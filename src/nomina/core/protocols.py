"""Protocol interfaces for all Nomina abstractions.

All inter-layer communication goes through these Protocols, so backends need
no common base class and can be checked with isinstance().
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional, Protocol, runtime_checkable

from nomina.models.concept import PayrollConcept
from nomina.models.inputs import AttendanceRecord, Employee, EmployeeBenefit, LeaveRequest
from nomina.models.payroll import Payroll, PayrollDetail, PayrollStatus
from nomina.models.period import PayrollPeriod, PeriodStatus


# ---------------------------------------------------------------------------
# Persistence: Concept catalog
# ---------------------------------------------------------------------------

@runtime_checkable
class IConceptStore(Protocol):
    """Payroll concept catalog."""

    def list_concepts(self) -> list[PayrollConcept]: ...

    def put_concept(self, concept: PayrollConcept) -> None: ...


# ---------------------------------------------------------------------------
# Persistence: Periods
# ---------------------------------------------------------------------------

@runtime_checkable
class IPeriodStore(Protocol):
    """Payroll periods with compare-and-swap status transitions."""

    def get_period(self, period_id: str) -> PayrollPeriod: ...

    def create_period(self, period: PayrollPeriod) -> PayrollPeriod: ...

    def transition(
        self,
        period_id: str,
        expected_status: PeriodStatus,
        expected_revision: int,
        changes: dict[str, Any],
    ) -> PayrollPeriod:
        """Apply ``changes`` only if status and revision still match; else PeriodStateError."""
        ...


# ---------------------------------------------------------------------------
# Persistence: Payrolls and details
# ---------------------------------------------------------------------------

@runtime_checkable
class IPayrollStore(Protocol):
    """Payroll rows keyed by (employee, period), details keyed by (payroll, concept)."""

    def get_payroll(self, period_id: str, employee_id: str) -> Optional[Payroll]: ...

    def list_payrolls(self, period_id: str) -> list[Payroll]: ...

    def list_details(self, payroll_id: str) -> list[PayrollDetail]: ...

    def replace_payroll(
        self,
        payroll: Payroll,
        details: list[PayrollDetail],
        expected_revision: Optional[int],
    ) -> Payroll:
        """Atomically upsert the payroll and swap its whole detail set.

        Raises PersistenceConflict when the stored revision differs from
        ``expected_revision`` (None means "must not exist yet"), and
        PeriodStateError when the owning period no longer allows recompute.
        A successful write also advances the period revision.
        """
        ...

    def set_payroll_status(
        self,
        period_id: str,
        employee_id: str,
        expected: frozenset[PayrollStatus],
        changes: dict[str, Any],
    ) -> Payroll:
        """Change one row while its period still allows recompute; advances the period revision."""
        ...

    def settle_period(
        self,
        period_id: str,
        expected_status: PeriodStatus,
        expected_revision: int,
        changes: dict[str, Any],
        from_status: PayrollStatus,
        payroll_changes: dict[str, Any],
    ) -> PayrollPeriod:
        """Transition the period and move every ``from_status`` row along with it.

        The period write is a CAS on (status, revision) like
        IPeriodStore.transition. Rows already moved by an interrupted call are
        left alone, so calling again after a failure finishes the job.
        """
        ...


# ---------------------------------------------------------------------------
# HR inputs
# ---------------------------------------------------------------------------

@runtime_checkable
class IInputSource(Protocol):
    """Roster, attendance, benefits and leave supplied by the HR collaborators."""

    def active_employees(self, period: PayrollPeriod) -> list[Employee]: ...

    def attendance(self, employee_id: str, start: date, end: date) -> list[AttendanceRecord]: ...

    def benefits(self, employee_id: str) -> list[EmployeeBenefit]: ...

    def leaves(self, employee_id: str, start: date, end: date) -> list[LeaveRequest]: ...


# ---------------------------------------------------------------------------
# Persistence: Cache Backend
# ---------------------------------------------------------------------------

@runtime_checkable
class ICacheBackend(Protocol):
    """Redis-compatible cache interface."""

    def get(self, key: str) -> str | None: ...

    def setex(self, key: str, ttl: int, value: str) -> None: ...

    def delete(self, key: str) -> None: ...
