"""Payroll period model and its lifecycle states."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, model_validator


class PeriodType(StrEnum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class PeriodStatus(StrEnum):
    DRAFT = "draft"
    PROCESSING = "processing"
    APPROVED = "approved"
    PAID = "paid"
    CLOSED = "closed"

    @property
    def allows_recompute(self) -> bool:
        match self:
            case PeriodStatus.DRAFT | PeriodStatus.PROCESSING:
                return True
            case PeriodStatus.APPROVED | PeriodStatus.PAID | PeriodStatus.CLOSED:
                return False


# Forward-only lifecycle; processing may re-enter itself for re-runs.
PERIOD_TRANSITIONS: dict[PeriodStatus, frozenset[PeriodStatus]] = {
    PeriodStatus.DRAFT: frozenset({PeriodStatus.PROCESSING}),
    PeriodStatus.PROCESSING: frozenset({PeriodStatus.PROCESSING, PeriodStatus.APPROVED}),
    PeriodStatus.APPROVED: frozenset({PeriodStatus.PAID}),
    PeriodStatus.PAID: frozenset({PeriodStatus.CLOSED}),
    PeriodStatus.CLOSED: frozenset(),
}


class PayrollPeriod(BaseModel):
    """A bounded date range for which payroll is computed and eventually closed."""

    id: str
    name: str = ""
    start_date: date
    end_date: date
    pay_date: date
    period_type: PeriodType = PeriodType.MONTHLY
    status: PeriodStatus = PeriodStatus.DRAFT

    total_gross: Decimal = Decimal("0")
    total_deductions: Decimal = Decimal("0")
    total_taxes: Decimal = Decimal("0")
    total_employer_contributions: Decimal = Decimal("0")
    total_net: Decimal = Decimal("0")
    total_employees: int = 0

    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    paid_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    revision: int = 0

    @model_validator(mode="after")
    def _check_dates(self) -> PayrollPeriod:
        if self.start_date >= self.end_date:
            raise ValueError("start_date must be before end_date")
        return self

    @property
    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def overlaps(self, start: date, end: Optional[date]) -> bool:
        return start <= self.end_date and (end is None or end >= self.start_date)
