"""Per-employee payroll calculation in two ordered passes.

Pass 1 evaluates earnings and accumulates the taxable base; pass 2 evaluates
deductions, taxes and employer-side concepts against that finalized base.
A concept may depend on aggregates of the previous pass but never on another
concept's individual amount, so the dependency graph has exactly two levels.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterable, Mapping, Optional

from nomina.core.exceptions import (
    CalculationTimeout,
    DependencyError,
    InvalidInputError,
    PeriodStateError,
)
from nomina.core.protocols import IPayrollStore
from nomina.engine.formula import FormulaFunction
from nomina.engine.money import money_sum, to_money
from nomina.engine.registry import ConceptRegistry, RegisteredConcept
from nomina.models.concept import CalculationType, ConceptType, EvaluationPass
from nomina.models.inputs import (
    BenefitFrequency,
    BenefitStatus,
    Employee,
    EmployeeBenefit,
    LeaveRequest,
    LeaveStatus,
)
from nomina.models.payroll import Payroll, PayrollDetail, PayrollStatus, payroll_id_for
from nomina.models.period import PayrollPeriod
from nomina.models.results import AttendanceSummary

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _overlap_days(start: date, end: date, period: PayrollPeriod) -> list[date]:
    first = max(start, period.start_date)
    last = min(end, period.end_date)
    return [first + timedelta(days=i) for i in range((last - first).days + 1)] if first <= last else []


def benefit_applies(benefit: EmployeeBenefit, period: PayrollPeriod) -> bool:
    """Active benefits whose date range overlaps the period, honouring frequency."""
    if benefit.status is not BenefitStatus.ACTIVE:
        return False
    if not period.overlaps(benefit.start_date, benefit.end_date):
        return False
    match benefit.frequency:
        case BenefitFrequency.ONE_TIME:
            return period.contains(benefit.start_date)
        case BenefitFrequency.ANNUAL:
            return any(
                d.month == benefit.start_date.month and d.day == benefit.start_date.day
                for d in _overlap_days(benefit.start_date, benefit.end_date or period.end_date, period)
            )
        case BenefitFrequency.WEEKLY | BenefitFrequency.BIWEEKLY | BenefitFrequency.MONTHLY:
            return True


def social_security_total(details: Iterable[PayrollDetail]) -> Decimal:
    """Pass-2 lines flagged for social security; reported apart from taxable income."""
    return money_sum(
        d.amount for d in details
        if d.affects_social_security and d.concept_type is not ConceptType.EARNING
    )


@dataclass
class _Line:
    entry: RegisteredConcept
    benefits: list[EmployeeBenefit] = field(default_factory=list)


class PayrollCalculator:
    """Computes and persists one employee's payroll for one period."""

    def __init__(
        self,
        payroll_store: IPayrollStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
        currency_places: int = 2,
    ) -> None:
        self._store = payroll_store
        self._clock = clock
        self._places = currency_places

    # ------------------------------------------------------------------
    # Guarded, persisted calculation
    # ------------------------------------------------------------------

    def calculate(
        self,
        employee: Employee,
        period: PayrollPeriod,
        registry: ConceptRegistry,
        summary: AttendanceSummary,
        benefits: Iterable[EmployeeBenefit] = (),
        leaves: Iterable[LeaveRequest] = (),
        *,
        extra_variables: Optional[Mapping[str, Decimal]] = None,
        deadline: Optional[float] = None,
        timeout_seconds: float = 0.0,
    ) -> tuple[Payroll, list[PayrollDetail]]:
        """Compute and replace the employee's payroll for ``period``.

        ``deadline`` is a ``time.monotonic()`` instant; when it has passed by
        the time the result is ready, nothing is written and
        CalculationTimeout is raised.
        """
        if not period.status.allows_recompute:
            raise PeriodStateError(f"Period {period.id} is {period.status}; payrolls can no longer be recomputed")

        existing = self._store.get_payroll(period.id, employee.id)
        if existing is not None and (existing.status.is_locked or existing.status is PayrollStatus.REJECTED):
            raise PeriodStateError(
                f"Payroll for employee {employee.id} in period {period.id} is {existing.status}"
            )

        payroll, details = self.compute(
            employee, period, registry, summary, benefits, leaves, extra_variables
        )

        if existing is not None and existing.status is PayrollStatus.CALCULATED:
            stored = {d.concept_code: d for d in self._store.list_details(existing.id)}
            if payroll.same_result(existing) and stored == {d.concept_code: d for d in details}:
                logger.debug("Payroll %s unchanged, keeping revision %d", existing.id, existing.revision)
                return existing, details

        if deadline is not None and time.monotonic() > deadline:
            raise CalculationTimeout(employee.id, timeout_seconds)

        payroll = payroll.model_copy(update={"calculated_at": self._clock()})
        expected = existing.revision if existing is not None else None
        saved = self._store.replace_payroll(payroll, details, expected)
        logger.info(
            "Calculated payroll %s: gross=%s net=%s (%d lines)",
            saved.id, saved.gross_salary, saved.net_salary, len(details),
        )
        return saved, details

    # ------------------------------------------------------------------
    # Pure computation
    # ------------------------------------------------------------------

    def compute(
        self,
        employee: Employee,
        period: PayrollPeriod,
        registry: ConceptRegistry,
        summary: AttendanceSummary,
        benefits: Iterable[EmployeeBenefit] = (),
        leaves: Iterable[LeaveRequest] = (),
        extra_variables: Optional[Mapping[str, Decimal]] = None,
    ) -> tuple[Payroll, list[PayrollDetail]]:
        if employee.base_salary <= 0:
            raise InvalidInputError(f"Employee {employee.id} base salary must be greater than 0")

        payroll_id = payroll_id_for(period.id, employee.id)
        variables = self._seed_variables(employee, period, summary, leaves)
        if extra_variables:
            variables.update({k: Decimal(v) for k, v in extra_variables.items()})
        lines = self._lines(employee, period, registry, benefits)

        details: list[PayrollDetail] = []
        taxable = gross = social_security = ZERO
        for line in lines[EvaluationPass.EARNINGS]:
            detail = self._evaluate(payroll_id, line, variables, EvaluationPass.EARNINGS, registry.functions)
            details.append(detail)
            gross += detail.amount
            if line.entry.concept.is_taxable:
                taxable += detail.amount
            if line.entry.concept.affects_social_security:
                social_security += detail.amount

        variables["taxable_income"] = taxable
        variables["gross_earnings"] = gross
        variables["social_security_base"] = social_security

        for line in lines[EvaluationPass.DEDUCTIONS]:
            details.append(self._evaluate(payroll_id, line, variables, EvaluationPass.DEDUCTIONS, registry.functions))

        payroll = self._totals(employee, period, payroll_id, variables, summary, lines, details)
        return payroll, details

    def _seed_variables(
        self,
        employee: Employee,
        period: PayrollPeriod,
        summary: AttendanceSummary,
        leaves: Iterable[LeaveRequest],
    ) -> dict[str, Decimal]:
        worked = set(summary.worked_dates)
        paid_days = unpaid_days = unpaid_counted = ZERO
        leave_deductions = ZERO
        for leave in leaves:
            if leave.employee_id != employee.id or leave.status is not LeaveStatus.APPROVED:
                continue
            days = _overlap_days(leave.start_date, leave.end_date, period)
            if not days:
                continue
            leave_deductions += leave.deduction_amount
            if leave.is_paid:
                paid_days += len(days)
            else:
                unpaid_days += len(days)
                unpaid_counted += len(worked.intersection(days))

        return {
            "base_salary": employee.base_salary,
            "worked_days": max(summary.worked_days - unpaid_counted, ZERO),
            "worked_hours": summary.worked_hours,
            "overtime_hours": summary.overtime_hours,
            "break_hours": summary.break_hours,
            "period_days": Decimal(period.duration_days),
            "paid_leave_days": paid_days,
            "unpaid_leave_days": unpaid_days,
            "leave_deductions": leave_deductions,
            "cesantias_accumulated": employee.cesantias_accumulated,
        }

    def _lines(
        self,
        employee: Employee,
        period: PayrollPeriod,
        registry: ConceptRegistry,
        benefits: Iterable[EmployeeBenefit],
    ) -> dict[EvaluationPass, list[_Line]]:
        lines: dict[str, _Line] = {}
        for evaluation_pass in EvaluationPass:
            for entry in registry.mandatory(evaluation_pass):
                lines[entry.code] = _Line(entry)

        for benefit in sorted(benefits, key=lambda b: (b.start_date, b.id)):
            if benefit.employee_id != employee.id or not benefit_applies(benefit, period):
                continue
            if benefit.concept_code not in registry:
                raise InvalidInputError(
                    f"Benefit {benefit.id or '?'} for employee {employee.id} "
                    f"assigns unknown or inactive concept {benefit.concept_code}"
                )
            line = lines.setdefault(benefit.concept_code, _Line(registry.get(benefit.concept_code)))
            line.benefits.append(benefit)

        ordered = sorted(lines.values(), key=lambda l: l.entry.concept.sort_key)
        return {
            p: [l for l in ordered if l.entry.concept.evaluation_pass is p]
            for p in EvaluationPass
        }

    def _evaluate(
        self,
        payroll_id: str,
        line: _Line,
        variables: Mapping[str, Decimal],
        evaluation_pass: EvaluationPass,
        functions: Mapping[str, FormulaFunction],
    ) -> PayrollDetail:
        entry = line.entry
        concept = entry.concept
        missing = entry.required_variables - variables.keys()
        if missing:
            raise DependencyError(concept.code, set(missing), evaluation_pass.value)

        if line.benefits:
            parts = [self._rule_amount(entry, variables, b, functions) for b in line.benefits]
        else:
            parts = [self._rule_amount(entry, variables, None, functions)]
        raw = sum((p[0] for p in parts), ZERO)
        base_amount, rate = parts[0][1], parts[0][2]

        clamped = raw
        if concept.minimum_amount is not None and clamped < concept.minimum_amount:
            clamped = concept.minimum_amount
        if concept.maximum_amount is not None and clamped > concept.maximum_amount:
            clamped = concept.maximum_amount
        amount = to_money(clamped, self._places)

        trace = {
            "pass": evaluation_pass.value,
            "calculation_type": concept.calculation_type.value,
            "formula": entry.compiled.source if entry.compiled is not None else None,
            "variables": {name: str(variables[name]) for name in sorted(entry.required_variables)},
            "raw": str(raw),
            "clamped": clamped != raw,
            "benefits": [b.id for b in line.benefits],
        }
        return PayrollDetail(
            payroll_id=payroll_id,
            concept_code=concept.code,
            concept_name=concept.name,
            concept_type=concept.type,
            amount=amount,
            base_amount=to_money(base_amount, self._places) if base_amount is not None else None,
            rate=rate,
            quantity=Decimal(len(parts)),
            display_order=concept.display_order,
            is_employer_side=concept.is_employer_side,
            affects_social_security=concept.affects_social_security,
            trace=trace,
        )

    def _rule_amount(
        self,
        entry: RegisteredConcept,
        variables: Mapping[str, Decimal],
        benefit: Optional[EmployeeBenefit],
        functions: Mapping[str, FormulaFunction],
    ) -> tuple[Decimal, Optional[Decimal], Optional[Decimal]]:
        """Return (raw amount, base amount, rate) for one application of a rule."""
        concept = entry.concept
        if benefit is not None and benefit.amount is not None:
            return benefit.amount, None, None

        match concept.calculation_type:
            case CalculationType.FIXED:
                if benefit is not None and benefit.rate is not None:
                    base = variables["base_salary"]
                    return base * benefit.rate, base, benefit.rate
                if concept.default_value is None:
                    raise InvalidInputError(f"Concept {concept.code} has no value for this employee")
                return concept.default_value, None, None
            case CalculationType.PERCENTAGE:
                base = variables[entry.base_variable]  # type: ignore[index]
                rate = benefit.rate if benefit is not None and benefit.rate is not None else entry.rate
                return base * rate, base, rate  # type: ignore[operator]
            case CalculationType.FORMULA:
                if benefit is not None and benefit.rate is not None:
                    base = variables["base_salary"]
                    return base * benefit.rate, base, benefit.rate
                return entry.compiled.evaluate(variables, functions), None, None  # type: ignore[union-attr]

    def _totals(
        self,
        employee: Employee,
        period: PayrollPeriod,
        payroll_id: str,
        variables: Mapping[str, Decimal],
        summary: AttendanceSummary,
        lines: Mapping[EvaluationPass, list[_Line]],
        details: list[PayrollDetail],
    ) -> Payroll:
        by_code = {l.entry.code: l.entry for ls in lines.values() for l in ls}

        def total(predicate) -> Decimal:
            return money_sum((d.amount for d in details if predicate(d)), self._places)

        gross = total(lambda d: d.concept_type is ConceptType.EARNING)
        deductions = total(lambda d: d.concept_type is ConceptType.DEDUCTION and not d.is_employer_side)
        taxes = total(lambda d: d.concept_type is ConceptType.TAX)
        employer = total(lambda d: d.is_employer_side)
        overtime_amount = total(
            lambda d: d.concept_type is ConceptType.EARNING and by_code[d.concept_code].depends_on_overtime
        )
        start = period.start_date
        number = employee.id.zfill(6) if employee.id.isdigit() else employee.id
        return Payroll(
            id=payroll_id,
            employee_id=employee.id,
            payroll_period_id=period.id,
            payroll_number=f"PAY-{start.year:04d}{start.month:02d}-{number}",
            base_salary=to_money(employee.base_salary, self._places),
            gross_salary=gross,
            total_earnings=gross,
            total_deductions=deductions,
            total_taxes=taxes,
            employer_contributions=employer,
            net_salary=gross - deductions - taxes,
            worked_days=variables["worked_days"],
            worked_hours=summary.worked_hours,
            overtime_hours=summary.overtime_hours,
            overtime_amount=overtime_amount,
            status=PayrollStatus.CALCULATED,
        )
