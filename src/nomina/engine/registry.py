"""Concept registry: validated, pre-compiled payroll concept catalog.

Every formula is parsed and checked once, when the concept is registered, so
that a broken catalog fails the whole run up front instead of failing each
employee with the same error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Iterator, Mapping, Optional

from nomina.core.exceptions import ConfigurationError, FormulaError, RecordNotFoundError
from nomina.engine.formula import (
    BASE_VOCABULARY,
    DEDUCTIONS_PASS_VARIABLES,
    CompiledFormula,
    FormulaFunction,
    compile_formula,
    split_percentage,
)
from nomina.models.concept import CalculationType, EvaluationPass, PayrollConcept

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegisteredConcept:
    """A concept together with its compiled rule."""

    concept: PayrollConcept
    compiled: Optional[CompiledFormula] = None
    base_variable: Optional[str] = None  # percentage rules only
    rate: Optional[Decimal] = None  # percentage rules only

    @property
    def code(self) -> str:
        return self.concept.code

    @property
    def required_variables(self) -> frozenset[str]:
        return self.compiled.variables if self.compiled is not None else frozenset()

    @property
    def depends_on_overtime(self) -> bool:
        return "overtime_hours" in self.required_variables


class ConceptRegistry:
    """Ordered catalog of validated concepts."""

    def __init__(
        self,
        functions: Mapping[str, FormulaFunction],
        extra_variables: Iterable[str] = (),
    ) -> None:
        self._functions = dict(functions)
        self._vocabulary = BASE_VOCABULARY | frozenset(extra_variables)
        self._concepts: dict[str, RegisteredConcept] = {}

    @classmethod
    def load(
        cls,
        concepts: Iterable[PayrollConcept],
        functions: Mapping[str, FormulaFunction],
        extra_variables: Iterable[str] = (),
    ) -> ConceptRegistry:
        """Build a registry, collecting every problem into one ConfigurationError."""
        registry = cls(functions, extra_variables)
        problems: dict[str, str] = {}
        for concept in concepts:
            try:
                registry.register(concept)
            except ConfigurationError as exc:
                problems.update(exc.problems)
        if problems:
            logger.error("Concept catalog rejected: %d problem(s)", len(problems))
            raise ConfigurationError(problems)
        logger.info("Loaded %d payroll concepts", len(registry))
        return registry

    @property
    def vocabulary(self) -> frozenset[str]:
        return self._vocabulary

    @property
    def functions(self) -> Mapping[str, FormulaFunction]:
        return self._functions

    def register(self, concept: PayrollConcept) -> RegisteredConcept:
        if concept.code in self._concepts:
            raise ConfigurationError({concept.code: "duplicate concept code"})
        try:
            entry = self._compile(concept)
        except FormulaError as exc:
            raise ConfigurationError({concept.code: str(exc)}) from exc
        self._check_pass(entry)
        self._concepts[concept.code] = entry
        return entry

    def _compile(self, concept: PayrollConcept) -> RegisteredConcept:
        match concept.calculation_type:
            case CalculationType.FIXED:
                if concept.is_mandatory and concept.default_value is None:
                    raise ConfigurationError({concept.code: "mandatory fixed concept needs a default_value"})
                return RegisteredConcept(concept=concept)
            case CalculationType.PERCENTAGE:
                compiled = compile_formula(concept.formula or "", self._vocabulary, self._functions)
                base_variable, rate = split_percentage(compiled)
                return RegisteredConcept(concept=concept, compiled=compiled, base_variable=base_variable, rate=rate)
            case CalculationType.FORMULA:
                compiled = compile_formula(concept.formula or "", self._vocabulary, self._functions)
                return RegisteredConcept(concept=concept, compiled=compiled)

    def _check_pass(self, entry: RegisteredConcept) -> None:
        if entry.concept.evaluation_pass is EvaluationPass.EARNINGS:
            early = entry.required_variables & DEDUCTIONS_PASS_VARIABLES
            if early:
                names = ", ".join(sorted(early))
                raise ConfigurationError(
                    {entry.code: f"earning references {names}, which is only known after the earnings pass"}
                )

    def get(self, code: str) -> RegisteredConcept:
        try:
            return self._concepts[code]
        except KeyError:
            raise RecordNotFoundError(f"Unknown payroll concept {code!r}") from None

    def __contains__(self, code: object) -> bool:
        return code in self._concepts

    def __len__(self) -> int:
        return len(self._concepts)

    def __iter__(self) -> Iterator[RegisteredConcept]:
        return iter(self.ordered())

    def ordered(self, evaluation_pass: Optional[EvaluationPass] = None) -> list[RegisteredConcept]:
        """Active concepts by (display_order, code); insertion order never matters."""
        entries = [
            e for e in self._concepts.values()
            if e.concept.is_active and (evaluation_pass is None or e.concept.evaluation_pass is evaluation_pass)
        ]
        return sorted(entries, key=lambda e: e.concept.sort_key)

    def mandatory(self, evaluation_pass: EvaluationPass) -> list[RegisteredConcept]:
        return [e for e in self.ordered(evaluation_pass) if e.concept.is_mandatory]
