"""Payroll concept catalog models."""

from __future__ import annotations

from decimal import Decimal
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, model_validator


class ConceptType(StrEnum):
    EARNING = "earning"
    DEDUCTION = "deduction"
    TAX = "tax"
    BENEFIT = "benefit"


class CalculationType(StrEnum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    FORMULA = "formula"


class ConceptStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class EvaluationPass(StrEnum):
    """Ordered evaluation phase a concept belongs to."""

    EARNINGS = "earnings"
    DEDUCTIONS = "deductions"


class PayrollConcept(BaseModel):
    """A named payroll line item and its calculation rule."""

    model_config = {"frozen": True, "str_strip_whitespace": True}

    code: str
    name: str
    description: str = ""
    type: ConceptType
    calculation_type: CalculationType
    default_value: Optional[Decimal] = None
    formula: Optional[str] = None
    is_taxable: bool = False
    affects_social_security: bool = False
    is_mandatory: bool = False
    is_employer_contribution: bool = False
    minimum_amount: Optional[Decimal] = None
    maximum_amount: Optional[Decimal] = None
    display_order: int = 0
    status: ConceptStatus = ConceptStatus.ACTIVE

    @model_validator(mode="after")
    def _check_rule_shape(self) -> PayrollConcept:
        if not self.code:
            raise ValueError("concept code is required")
        if self.calculation_type in (CalculationType.FORMULA, CalculationType.PERCENTAGE) and not self.formula:
            raise ValueError(f"{self.calculation_type} concept {self.code} requires a formula")
        if (
            self.minimum_amount is not None
            and self.maximum_amount is not None
            and self.minimum_amount > self.maximum_amount
        ):
            raise ValueError(f"concept {self.code} has minimum_amount above maximum_amount")
        return self

    @property
    def is_active(self) -> bool:
        return self.status is ConceptStatus.ACTIVE

    @property
    def evaluation_pass(self) -> EvaluationPass:
        match self.type:
            case ConceptType.EARNING:
                return EvaluationPass.EARNINGS
            case ConceptType.DEDUCTION | ConceptType.TAX | ConceptType.BENEFIT:
                return EvaluationPass.DEDUCTIONS

    @property
    def is_employer_side(self) -> bool:
        """Employer-paid lines that never reduce the employee's net."""
        match self.type:
            case ConceptType.BENEFIT:
                return True
            case ConceptType.DEDUCTION:
                return self.is_employer_contribution
            case ConceptType.EARNING | ConceptType.TAX:
                return False

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.display_order, self.code)
