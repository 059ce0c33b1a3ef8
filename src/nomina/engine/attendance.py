"""Attendance aggregation over a payroll period."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable

from nomina.core.exceptions import InvalidInputError, MissingInputWarning
from nomina.models.inputs import AttendanceRecord, AttendanceStatus, Employee
from nomina.models.period import PayrollPeriod
from nomina.models.results import AttendanceSummary, RunWarning

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class AttendancePolicy:
    """Pay policy flags supplied by the caller."""

    paid_leave: bool = True
    paid_holidays: bool = True

    def counts_as_worked(self, status: AttendanceStatus) -> bool:
        match status:
            case AttendanceStatus.PRESENT | AttendanceStatus.LATE | AttendanceStatus.VERY_LATE:
                return True
            case AttendanceStatus.LEAVE:
                return self.paid_leave
            case AttendanceStatus.HOLIDAY:
                return self.paid_holidays
            case AttendanceStatus.ABSENT:
                return False


def _days(start: date, end: date) -> Iterable[date]:
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


class AttendanceAggregator:
    """Reduces per-day attendance rows into worked days and hours."""

    def __init__(self, policy: AttendancePolicy | None = None) -> None:
        self._policy = policy or AttendancePolicy()

    def aggregate(
        self,
        employee: Employee,
        period: PayrollPeriod,
        rows: Iterable[AttendanceRecord],
    ) -> AttendanceSummary:
        by_date: dict[date, AttendanceRecord] = {}
        for row in rows:
            if row.employee_id != employee.id or not period.contains(row.date):
                continue
            if row.date in by_date:
                raise InvalidInputError(f"Duplicate attendance for employee {employee.id} on {row.date.isoformat()}")
            by_date[row.date] = row

        worked_days = worked_hours = overtime = unapproved = breaks = ZERO
        worked_dates: list[date] = []
        for row in sorted(by_date.values(), key=lambda r: r.date):
            if self._policy.counts_as_worked(row.status):
                worked_dates.append(row.date)
                worked_days += 1
                worked_hours += row.worked_hours
                breaks += row.break_hours
            if row.status is AttendanceStatus.ABSENT or row.overtime_hours <= 0:
                continue
            if row.is_overtime_approved:
                overtime += row.overtime_hours
            else:
                unapproved += row.overtime_hours

        missing = [
            day for day in _days(period.start_date, period.end_date)
            if day not in by_date and employee.employed_on(day)
        ]
        warnings: list[RunWarning] = []
        if missing:
            message = f"{len(missing)} day(s) without attendance counted as zero hours"
            warnings.append(RunWarning(
                employee_id=employee.id,
                kind=MissingInputWarning.__name__,
                message=message,
                dates=missing,
            ))
            logger.warning("Employee %s, period %s: %s", employee.id, period.id, message)

        return AttendanceSummary(
            employee_id=employee.id,
            worked_days=worked_days,
            worked_hours=worked_hours,
            overtime_hours=overtime,
            break_hours=breaks,
            unapproved_overtime_hours=unapproved,
            worked_dates=worked_dates,
            missing_dates=missing,
            warnings=warnings,
        )
