"""Period lifecycle endpoints."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from nomina.engine.period_manager import PeriodManager
from nomina.models.payroll import Payroll
from nomina.models.period import PayrollPeriod, PeriodType
from nomina.models.results import PeriodSummary, RunResult

router = APIRouter(tags=["periods"])


class CreatePeriodRequest(BaseModel):
    id: str
    name: str = ""
    start_date: date
    end_date: date
    pay_date: date
    period_type: PeriodType = PeriodType.MONTHLY


class ProcessRequest(BaseModel):
    employee_ids: Optional[list[str]] = None


class ActorRequest(BaseModel):
    actor: str


class RejectRequest(BaseModel):
    reason: str


def get_manager(request: Request) -> PeriodManager:
    return request.app.state.manager


@router.post("", status_code=201)
def create_period(body: CreatePeriodRequest, manager: PeriodManager = Depends(get_manager)) -> PayrollPeriod:
    return manager.create_period(
        body.id, body.start_date, body.end_date, body.pay_date, body.period_type, body.name,
    )


@router.get("/{period_id}")
def get_period(period_id: str, manager: PeriodManager = Depends(get_manager)) -> PayrollPeriod:
    return manager.get_period(period_id)


@router.post("/{period_id}/process")
def process_period(
    period_id: str,
    body: ProcessRequest | None = None,
    manager: PeriodManager = Depends(get_manager),
) -> RunResult:
    employee_ids = body.employee_ids if body is not None else None
    return manager.process(period_id, employee_ids=employee_ids)


@router.post("/{period_id}/approve")
def approve_period(period_id: str, body: ActorRequest, manager: PeriodManager = Depends(get_manager)) -> PayrollPeriod:
    return manager.approve(period_id, body.actor)


@router.post("/{period_id}/pay")
def pay_period(period_id: str, manager: PeriodManager = Depends(get_manager)) -> PayrollPeriod:
    return manager.mark_paid(period_id)


@router.post("/{period_id}/close")
def close_period(period_id: str, body: ActorRequest, manager: PeriodManager = Depends(get_manager)) -> PayrollPeriod:
    return manager.close(period_id, body.actor)


@router.get("/{period_id}/summary")
def period_summary(period_id: str, manager: PeriodManager = Depends(get_manager)) -> PeriodSummary:
    return manager.summary(period_id)


@router.post("/{period_id}/payrolls/{employee_id}/approve")
def approve_payroll(
    period_id: str, employee_id: str, body: ActorRequest, manager: PeriodManager = Depends(get_manager),
) -> Payroll:
    return manager.approve_payroll(period_id, employee_id, body.actor)


@router.post("/{period_id}/payrolls/{employee_id}/reject")
def reject_payroll(
    period_id: str, employee_id: str, body: RejectRequest, manager: PeriodManager = Depends(get_manager),
) -> Payroll:
    return manager.reject_payroll(period_id, employee_id, body.reason)
