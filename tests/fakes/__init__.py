"""Shared test doubles: the memory backends plus small record builders."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable

from nomina.models.concept import CalculationType, ConceptType, PayrollConcept
from nomina.models.inputs import AttendanceRecord, AttendanceStatus
from nomina.models.period import PayrollPeriod
from nomina.persistence.memory_backend import (
    MemoryCacheBackend,
    MemoryConceptStore,
    MemoryInputSource,
    MemoryPayrollStore,
    MemoryPeriodStore,
)

__all__ = [
    "MemoryCacheBackend",
    "MemoryConceptStore",
    "MemoryInputSource",
    "MemoryPayrollStore",
    "MemoryPeriodStore",
    "attendance_for",
    "concept",
    "november_period",
]


def concept(code: str, type_: str, calculation_type: str, **kwargs) -> PayrollConcept:
    """Build a concept; mandatory unless stated otherwise."""
    kwargs.setdefault("name", code.replace("_", " ").title())
    kwargs.setdefault("is_mandatory", True)
    return PayrollConcept(
        code=code,
        type=ConceptType(type_),
        calculation_type=CalculationType(calculation_type),
        **kwargs,
    )


def november_period(period_id: str = "2024-11", **kwargs) -> PayrollPeriod:
    """A 30-day monthly period: 2024-11-01 to 2024-11-30."""
    return PayrollPeriod(
        id=period_id,
        name=kwargs.pop("name", "November 2024"),
        start_date=date(2024, 11, 1),
        end_date=date(2024, 11, 30),
        pay_date=date(2024, 11, 30),
        **kwargs,
    )


def attendance_for(
    employee_id: str,
    start: date,
    days: int,
    *,
    hours: str = "8",
    overtime: Iterable[tuple[int, str, bool]] = (),
    skip: Iterable[int] = (),
    status: AttendanceStatus = AttendanceStatus.PRESENT,
) -> list[AttendanceRecord]:
    """One row per day from ``start``; ``overtime`` is (day offset, hours, approved)."""
    extra = {offset: (Decimal(h), approved) for offset, h, approved in overtime}
    skipped = set(skip)
    rows = []
    for offset in range(days):
        if offset in skipped:
            continue
        ot_hours, approved = extra.get(offset, (Decimal("0"), False))
        rows.append(AttendanceRecord(
            employee_id=employee_id,
            date=start + timedelta(days=offset),
            worked_hours=Decimal(hours),
            overtime_hours=ot_hours,
            break_hours=Decimal("1"),
            is_overtime_approved=approved,
            status=status,
        ))
    return rows
