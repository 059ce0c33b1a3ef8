"""Period lifecycle and batch runs across the employee roster.

draft -> processing -> approved -> paid -> closed, forward only. Every status
change is a compare-and-swap on the period's (status, revision) and carries
totals freshly summed from the stored payroll rows.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError

from nomina.core.config import AppSettings
from nomina.core.exceptions import (
    InvalidInputError,
    NominaError,
    PeriodStateError,
    PersistenceConflict,
    RecordNotFoundError,
)
from nomina.core.protocols import IConceptStore, IInputSource, IPayrollStore, IPeriodStore
from nomina.engine.attendance import AttendanceAggregator, AttendancePolicy
from nomina.engine.calculator import PayrollCalculator
from nomina.engine.formula import default_functions
from nomina.engine.income_tax import IncomeTaxTable
from nomina.engine.money import money_sum
from nomina.engine.registry import ConceptRegistry
from nomina.models.inputs import Employee
from nomina.models.payroll import Payroll, PayrollStatus
from nomina.models.period import PERIOD_TRANSITIONS, PayrollPeriod, PeriodStatus, PeriodType
from nomina.models.results import EmployeeFailure, PeriodRun, PeriodSummary, RunResult, RunWarning

logger = logging.getLogger(__name__)

_SKIPPED = "skipped"
_LOCKED = "locked"
_SUCCEEDED = "succeeded"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PeriodManager:
    """Owns the PayrollPeriod lifecycle and fans calculation out over the roster."""

    def __init__(
        self,
        concept_store: IConceptStore,
        period_store: IPeriodStore,
        payroll_store: IPayrollStore,
        input_source: IInputSource,
        *,
        settings: AppSettings | None = None,
        extra_variables: Iterable[str] = (),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings or AppSettings()
        self._concepts = concept_store
        self._periods = period_store
        self._payrolls = payroll_store
        self._inputs = input_source
        self._extra_variables = tuple(extra_variables)
        self._clock = clock
        payroll_cfg = self._settings.payroll
        self._calculator = PayrollCalculator(
            payroll_store, clock=clock, currency_places=payroll_cfg.currency_places
        )
        self._aggregator = AttendanceAggregator(
            AttendancePolicy(paid_leave=payroll_cfg.paid_leave, paid_holidays=payroll_cfg.paid_holidays)
        )

    # ------------------------------------------------------------------
    # Periods
    # ------------------------------------------------------------------

    def create_period(
        self,
        period_id: str,
        start_date: date,
        end_date: date,
        pay_date: date,
        period_type: PeriodType = PeriodType.MONTHLY,
        name: str = "",
    ) -> PayrollPeriod:
        try:
            period = PayrollPeriod(
                id=period_id,
                name=name or period_id,
                start_date=start_date,
                end_date=end_date,
                pay_date=pay_date,
                period_type=period_type,
            )
        except ValidationError as exc:
            raise InvalidInputError(f"Invalid payroll period {period_id!r}: {exc}") from exc
        created = self._periods.create_period(period)
        logger.info("Created payroll period %s (%s to %s)", period_id, start_date, end_date)
        return created

    def get_period(self, period_id: str) -> PayrollPeriod:
        return self._periods.get_period(period_id)

    def load_registry(self) -> ConceptRegistry:
        """Validate the active concept catalog; ConfigurationError if any concept is broken."""
        functions = default_functions(IncomeTaxTable.from_config(self._settings.income_tax))
        active = [c for c in self._concepts.list_concepts() if c.is_active]
        return ConceptRegistry.load(active, functions, self._extra_variables)

    # ------------------------------------------------------------------
    # Processing run
    # ------------------------------------------------------------------

    def process(
        self,
        period_id: str,
        cancel: Optional[threading.Event] = None,
        employee_ids: Optional[Iterable[str]] = None,
    ) -> RunResult:
        """Calculate every in-scope employee; per-employee failures never stop the run."""
        period = self._periods.get_period(period_id)
        if not period.status.allows_recompute:
            raise PeriodStateError(f"Period {period_id} is {period.status}; it can no longer be processed")

        registry = self.load_registry()

        if period.status is PeriodStatus.DRAFT:
            try:
                period = self._periods.transition(
                    period.id, PeriodStatus.DRAFT, period.revision, {"status": PeriodStatus.PROCESSING}
                )
            except PeriodStateError:
                # a concurrent run may have started it first
                period = self._periods.get_period(period_id)
                if period.status is not PeriodStatus.PROCESSING:
                    raise

        roster = self._inputs.active_employees(period)
        result = RunResult(period_id=period.id)
        if employee_ids is not None:
            wanted = set(employee_ids)
            known = {e.id for e in roster}
            for missing in sorted(wanted - known):
                result.failed.append(EmployeeFailure(
                    employee_id=missing,
                    error_kind=RecordNotFoundError.__name__,
                    message=f"Employee {missing} is not active in period {period.id}",
                ))
            roster = [e for e in roster if e.id in wanted]

        run = PeriodRun(period=period, roster=roster, started_at=self._clock(), result=result)
        logger.info("Processing period %s for %d employee(s)", period.id, len(roster))
        self._fan_out(run, registry, cancel)

        result.cancelled = cancel is not None and cancel.is_set()
        period = self._advance(period.id, PeriodStatus.PROCESSING, PeriodStatus.PROCESSING)
        result.period_status = period.status
        logger.info(
            "Period %s run finished: %d succeeded, %d failed, %d skipped, %d locked",
            period.id, len(result.succeeded), len(result.failed), len(result.skipped), len(result.locked),
        )
        return result

    def _fan_out(self, run: PeriodRun, registry: ConceptRegistry, cancel: Optional[threading.Event]) -> None:
        result = run.result
        with ThreadPoolExecutor(max_workers=max(1, self._settings.payroll.max_workers)) as pool:
            futures: list[tuple[Employee, Future]] = [
                (employee, pool.submit(self._run_employee, run, registry, employee, cancel))
                for employee in run.roster
            ]
            for employee, future in futures:
                try:
                    outcome, warnings = future.result()
                except NominaError as exc:
                    logger.error("Employee %s failed in period %s: %s", employee.id, run.period.id, exc)
                    self._record_failure(run, employee.id, exc)
                    continue
                except Exception as exc:
                    logger.exception("Unexpected error for employee %s in period %s", employee.id, run.period.id)
                    self._record_failure(run, employee.id, exc)
                    continue
                result.warnings.extend(warnings)
                if outcome == _SKIPPED:
                    result.skipped.append(employee.id)
                elif outcome == _LOCKED:
                    result.locked.append(employee.id)
                else:
                    result.succeeded.append(employee.id)

    def _run_employee(
        self,
        run: PeriodRun,
        registry: ConceptRegistry,
        employee: Employee,
        cancel: Optional[threading.Event],
    ) -> tuple[str, list[RunWarning]]:
        if cancel is not None and cancel.is_set():
            return _SKIPPED, []

        period = run.period
        existing = self._payrolls.get_payroll(period.id, employee.id)
        if existing is not None and (existing.status.is_locked or existing.status is PayrollStatus.REJECTED):
            logger.info("Payroll %s is %s; leaving it untouched", existing.id, existing.status)
            return _LOCKED, []

        timeout = self._settings.payroll.employee_timeout_seconds
        deadline = time.monotonic() + timeout
        rows = self._inputs.attendance(employee.id, period.start_date, period.end_date)
        summary = self._aggregator.aggregate(employee, period, rows)
        benefits = self._inputs.benefits(employee.id)
        leaves = self._inputs.leaves(employee.id, period.start_date, period.end_date)

        attempts = max(1, self._settings.payroll.max_retries)
        for attempt in range(1, attempts + 1):
            try:
                self._calculator.calculate(
                    employee, period, registry, summary, benefits, leaves,
                    deadline=deadline, timeout_seconds=timeout,
                )
                break
            except PersistenceConflict:
                if attempt == attempts:
                    raise
                logger.warning(
                    "Write conflict for employee %s in period %s, retry %d/%d",
                    employee.id, period.id, attempt, attempts - 1,
                )
        return _SUCCEEDED, list(summary.warnings)

    def _record_failure(self, run: PeriodRun, employee_id: str, exc: Exception) -> None:
        run.result.failed.append(EmployeeFailure(
            employee_id=employee_id, error_kind=type(exc).__name__, message=str(exc),
        ))
        if isinstance(exc, PeriodStateError):
            # the period or row moved on; its stored payroll must stay as it is
            return
        try:
            self._payrolls.set_payroll_status(
                run.period.id,
                employee_id,
                frozenset({PayrollStatus.CALCULATED, PayrollStatus.DRAFT}),
                {"status": PayrollStatus.DRAFT, "notes": f"{type(exc).__name__}: {exc}"},
            )
        except (RecordNotFoundError, PeriodStateError):
            # nothing stored yet, or the row or period is locked
            logger.debug("No recalculable payroll to flag for employee %s", employee_id)

    # ------------------------------------------------------------------
    # Period transitions
    # ------------------------------------------------------------------

    def approve(self, period_id: str, approved_by: str) -> PayrollPeriod:
        """Approve the period and, in the same store call, every calculated row."""
        now = self._clock()
        return self._advance(
            period_id, PeriodStatus.PROCESSING, PeriodStatus.APPROVED,
            {"approved_at": now, "approved_by": approved_by},
            cascade=(PayrollStatus.CALCULATED,
                     {"status": PayrollStatus.APPROVED, "approved_at": now, "approved_by": approved_by}),
            check=self._check_ready,
        )

    def _check_ready(self, period: PayrollPeriod, rows: list[Payroll]) -> None:
        payrolls = {p.employee_id: p for p in rows}
        ready = {PayrollStatus.CALCULATED, PayrollStatus.APPROVED}
        pending = {e.id for e in self._inputs.active_employees(period) if e.id not in payrolls}
        pending |= {p.employee_id for p in rows if p.status is PayrollStatus.DRAFT}
        if pending:
            raise PeriodStateError(f"Period {period.id} has uncalculated payrolls: {', '.join(sorted(pending))}")
        if not any(p.status in ready for p in rows):
            raise PeriodStateError(f"Period {period.id} has no calculated payrolls to approve")

    def mark_paid(self, period_id: str) -> PayrollPeriod:
        now = self._clock()
        return self._advance(
            period_id, PeriodStatus.APPROVED, PeriodStatus.PAID, {"paid_at": now},
            cascade=(PayrollStatus.APPROVED, {"status": PayrollStatus.PAID, "paid_at": now}),
        )

    def close(self, period_id: str, closed_by: str) -> PayrollPeriod:
        return self._advance(
            period_id, PeriodStatus.PAID, PeriodStatus.CLOSED,
            {"closed_at": self._clock(), "closed_by": closed_by},
        )

    def _advance(
        self,
        period_id: str,
        from_status: PeriodStatus,
        to_status: PeriodStatus,
        changes: Optional[dict[str, Any]] = None,
        cascade: Optional[tuple[PayrollStatus, dict[str, Any]]] = None,
        check: Optional[Callable[[PayrollPeriod, list[Payroll]], None]] = None,
    ) -> PayrollPeriod:
        """CAS the period forward with totals summed from the rows read in the same attempt.

        Every payroll write advances the period revision, so a row committed
        after the totals were read makes the CAS fail and the attempt repeat.
        """
        if to_status not in PERIOD_TRANSITIONS[from_status]:
            raise PeriodStateError(f"Illegal period transition {from_status} -> {to_status}")
        attempts = max(1, self._settings.payroll.max_retries)
        for attempt in range(1, attempts + 1):
            period = self._periods.get_period(period_id)
            if period.status is not from_status:
                raise PeriodStateError(f"Period {period_id} is {period.status}, expected {from_status}")
            rows = self._payrolls.list_payrolls(period_id)
            if check is not None:
                check(period, rows)
            update = {**self._totals(rows), **(changes or {}), "status": to_status}
            try:
                if cascade is None:
                    updated = self._periods.transition(period_id, from_status, period.revision, update)
                else:
                    row_status, row_changes = cascade
                    updated = self._payrolls.settle_period(
                        period_id, from_status, period.revision, update, row_status, row_changes
                    )
            except (PeriodStateError, PersistenceConflict):
                if attempt == attempts:
                    raise
                logger.warning(
                    "Period %s changed while moving to %s, retry %d/%d",
                    period_id, to_status, attempt, attempts - 1,
                )
                continue
            logger.info("Period %s: %s -> %s (revision %d)", period_id, from_status, to_status, updated.revision)
            return updated
        raise PeriodStateError(f"Period {period_id} could not leave {from_status}")

    def _totals(self, rows: list[Payroll]) -> dict[str, Any]:
        places = self._settings.payroll.currency_places
        return {
            "total_gross": money_sum((p.gross_salary for p in rows), places),
            "total_deductions": money_sum((p.total_deductions for p in rows), places),
            "total_taxes": money_sum((p.total_taxes for p in rows), places),
            "total_employer_contributions": money_sum((p.employer_contributions for p in rows), places),
            "total_net": money_sum((p.net_salary for p in rows), places),
            "total_employees": len(rows),
        }

    # ------------------------------------------------------------------
    # Individual payrolls
    # ------------------------------------------------------------------

    def approve_payroll(self, period_id: str, employee_id: str, approved_by: str) -> Payroll:
        period = self._periods.get_period(period_id)
        if not period.status.allows_recompute:
            raise PeriodStateError(f"Period {period_id} is {period.status}")
        payroll = self._payrolls.set_payroll_status(
            period_id, employee_id, frozenset({PayrollStatus.CALCULATED}),
            {"status": PayrollStatus.APPROVED, "approved_at": self._clock(), "approved_by": approved_by},
        )
        logger.info("Payroll %s approved by %s", payroll.id, approved_by)
        return payroll

    def reject_payroll(self, period_id: str, employee_id: str, reason: str) -> Payroll:
        """Reject one payroll; it keeps counting in the totals but later runs leave it alone."""
        period = self._periods.get_period(period_id)
        if not period.status.allows_recompute:
            raise PeriodStateError(f"Period {period_id} is {period.status}; payrolls can no longer be rejected")
        payroll = self._payrolls.set_payroll_status(
            period_id, employee_id, frozenset({PayrollStatus.CALCULATED, PayrollStatus.APPROVED}),
            {"status": PayrollStatus.REJECTED, "notes": reason},
        )
        logger.info("Payroll %s rejected", payroll.id)
        return payroll

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def summary(self, period_id: str) -> PeriodSummary:
        period = self._periods.get_period(period_id)
        by_status: dict[PayrollStatus, int] = {}
        for payroll in self._payrolls.list_payrolls(period_id):
            by_status[payroll.status] = by_status.get(payroll.status, 0) + 1
        return PeriodSummary(
            period_id=period.id,
            status=period.status,
            total_employees=period.total_employees,
            total_gross=period.total_gross,
            total_deductions=period.total_deductions,
            total_taxes=period.total_taxes,
            total_employer_contributions=period.total_employer_contributions,
            total_net=period.total_net,
            by_status=by_status,
        )

