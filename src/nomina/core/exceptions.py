"""Nomina exception hierarchy."""

from __future__ import annotations


class NominaError(Exception):
    """Base exception for all Nomina errors."""


class FormulaError(NominaError):
    """A formula failed to parse or evaluate."""

    def __init__(self, formula: str, message: str) -> None:
        self.formula = formula
        super().__init__(f"Formula {formula!r}: {message}")


class ConfigurationError(NominaError):
    """The concept catalog is broken; the run must not start."""

    def __init__(self, problems: dict[str, str]) -> None:
        self.problems = dict(problems)
        detail = "; ".join(f"{code}: {msg}" for code, msg in sorted(self.problems.items()))
        super().__init__(f"Invalid concept catalog: {detail}")


class DependencyError(NominaError):
    """A formula references a value not yet available in its evaluation pass."""

    def __init__(self, concept_code: str, missing: set[str], pass_name: str) -> None:
        self.concept_code = concept_code
        self.missing = frozenset(missing)
        self.pass_name = pass_name
        names = ", ".join(sorted(missing))
        super().__init__(f"Concept {concept_code} needs [{names}] which is unresolved in the {pass_name} pass")


class MissingInputWarning(UserWarning):
    """Non-fatal gap in the inputs (e.g. a day without attendance)."""


class PeriodStateError(NominaError):
    """Operation is forbidden in the current period or payroll state."""


class PersistenceConflict(NominaError):
    """A concurrent writer won the race; retry the employee's transaction."""


class RecordNotFoundError(NominaError):
    """Requested period, payroll or concept does not exist."""


class InvalidInputError(NominaError):
    """Collaborator-supplied input fails basic validation."""


class CalculationTimeout(NominaError):
    """An employee calculation exceeded its deadline and was not committed."""

    def __init__(self, employee_id: str, timeout_seconds: float) -> None:
        self.employee_id = employee_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Calculation for employee {employee_id} exceeded {timeout_seconds}s")


class CacheError(NominaError):
    """Redis cache operation failed."""
