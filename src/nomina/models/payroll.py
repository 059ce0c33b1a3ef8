"""Computed payroll rows: one Payroll per employee/period, one detail per concept."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, Field

from nomina.models.concept import ConceptType


class PayrollStatus(StrEnum):
    DRAFT = "draft"
    CALCULATED = "calculated"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"

    @property
    def is_locked(self) -> bool:
        match self:
            case PayrollStatus.APPROVED | PayrollStatus.PAID:
                return True
            case PayrollStatus.DRAFT | PayrollStatus.CALCULATED | PayrollStatus.REJECTED:
                return False


def payroll_id_for(period_id: str, employee_id: str) -> str:
    return f"{period_id}#{employee_id}"


class PayrollDetail(BaseModel):
    """One concept's contribution to a Payroll."""

    payroll_id: str
    concept_code: str
    concept_name: str = ""
    concept_type: ConceptType
    amount: Decimal
    base_amount: Optional[Decimal] = None
    rate: Optional[Decimal] = None
    quantity: Decimal = Decimal("1")
    display_order: int = 0
    is_employer_side: bool = False
    affects_social_security: bool = False
    trace: dict[str, Any] = Field(default_factory=dict)


class Payroll(BaseModel):
    """One employee's computed result for one period."""

    id: str
    employee_id: str
    payroll_period_id: str
    payroll_number: str = ""

    base_salary: Decimal = Decimal("0")
    gross_salary: Decimal = Decimal("0")
    total_earnings: Decimal = Decimal("0")
    total_deductions: Decimal = Decimal("0")
    total_taxes: Decimal = Decimal("0")
    employer_contributions: Decimal = Decimal("0")
    net_salary: Decimal = Decimal("0")

    worked_days: Decimal = Decimal("0")
    worked_hours: Decimal = Decimal("0")
    overtime_hours: Decimal = Decimal("0")
    overtime_amount: Decimal = Decimal("0")

    status: PayrollStatus = PayrollStatus.DRAFT
    notes: str = ""
    calculated_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    paid_at: Optional[datetime] = None
    revision: int = 0

    def same_result(self, other: Payroll) -> bool:
        """True when both rows carry identical computed figures."""
        skip = {"calculated_at", "revision"}
        return self.model_dump(exclude=skip) == other.model_dump(exclude=skip)
