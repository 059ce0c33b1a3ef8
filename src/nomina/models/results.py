"""Run-level result models returned to callers of the period manager."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from nomina.models.inputs import Employee
from nomina.models.payroll import PayrollStatus
from nomina.models.period import PayrollPeriod, PeriodStatus


class RunWarning(BaseModel):
    """Non-fatal issue surfaced during a run."""

    employee_id: str
    kind: str = "MissingInputWarning"
    message: str
    dates: list[date] = Field(default_factory=list)


class AttendanceSummary(BaseModel):
    """Attendance reduced over one employee and one period."""

    employee_id: str
    worked_days: Decimal = Decimal("0")
    worked_hours: Decimal = Decimal("0")
    overtime_hours: Decimal = Decimal("0")
    break_hours: Decimal = Decimal("0")
    unapproved_overtime_hours: Decimal = Decimal("0")  # informational, never paid
    worked_dates: list[date] = Field(default_factory=list)
    missing_dates: list[date] = Field(default_factory=list)
    warnings: list[RunWarning] = Field(default_factory=list)


class EmployeeFailure(BaseModel):
    employee_id: str
    error_kind: str
    message: str


class RunResult(BaseModel):
    """Structured outcome of a period run."""

    period_id: str
    succeeded: list[str] = Field(default_factory=list)
    failed: list[EmployeeFailure] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)  # not started before cancellation
    locked: list[str] = Field(default_factory=list)  # approved or rejected, left untouched
    warnings: list[RunWarning] = Field(default_factory=list)
    cancelled: bool = False
    period_status: PeriodStatus = PeriodStatus.PROCESSING

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped and not self.cancelled


class PeriodRun(BaseModel):
    """Explicit value carried through one processing run of a period."""

    period: PayrollPeriod
    roster: list[Employee]
    started_at: datetime
    result: RunResult


class PeriodSummary(BaseModel):
    period_id: str
    status: PeriodStatus
    total_employees: int = 0
    total_gross: Decimal = Decimal("0")
    total_deductions: Decimal = Decimal("0")
    total_taxes: Decimal = Decimal("0")
    total_employer_contributions: Decimal = Decimal("0")
    total_net: Decimal = Decimal("0")
    by_status: dict[PayrollStatus, int] = Field(default_factory=dict)
