"""Input records consumed from the HR collaborators (roster, attendance, benefits, leave)."""

from __future__ import annotations

import datetime as dt
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, model_validator


class EmployeeStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TERMINATED = "terminated"


class Employee(BaseModel):
    """Roster entry as supplied by employee management."""

    id: str
    base_salary: Decimal
    status: EmployeeStatus = EmployeeStatus.ACTIVE
    hire_date: Optional[date] = None
    termination_date: Optional[date] = None
    cesantias_accumulated: Decimal = Decimal("0")  # severance balance carried in

    def employed_on(self, day: date) -> bool:
        if self.hire_date is not None and day < self.hire_date:
            return False
        if self.termination_date is not None and day > self.termination_date:
            return False
        return True


class AttendanceStatus(StrEnum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    VERY_LATE = "very_late"
    LEAVE = "leave"
    HOLIDAY = "holiday"


class AttendanceRecord(BaseModel):
    employee_id: str
    date: dt.date
    worked_hours: Decimal = Decimal("0")
    overtime_hours: Decimal = Decimal("0")
    break_hours: Decimal = Decimal("0")
    is_overtime_approved: bool = False
    status: AttendanceStatus = AttendanceStatus.ABSENT


class BenefitFrequency(StrEnum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    ANNUAL = "annual"
    ONE_TIME = "one_time"


class BenefitStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class EmployeeBenefit(BaseModel):
    """Assignment of a concept to an employee, optionally overriding its value."""

    id: str = ""
    employee_id: str
    concept_code: str
    amount: Optional[Decimal] = None
    rate: Optional[Decimal] = None
    frequency: BenefitFrequency = BenefitFrequency.MONTHLY
    start_date: date
    end_date: Optional[date] = None
    status: BenefitStatus = BenefitStatus.ACTIVE


class LeaveType(StrEnum):
    VACATION = "vacation"
    SICK = "sick"
    PERSONAL = "personal"
    MATERNITY = "maternity"
    PATERNITY = "paternity"
    BEREAVEMENT = "bereavement"
    EMERGENCY = "emergency"


class LeaveStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class LeaveRequest(BaseModel):
    id: str = ""
    employee_id: str
    leave_type: LeaveType = LeaveType.PERSONAL
    start_date: date
    end_date: date
    is_paid: bool = True
    deduction_amount: Decimal = Decimal("0")
    status: LeaveStatus = LeaveStatus.PENDING

    @model_validator(mode="after")
    def _check_dates(self) -> LeaveRequest:
        if self.end_date < self.start_date:
            raise ValueError("leave end_date precedes start_date")
        return self
