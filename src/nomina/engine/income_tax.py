"""Progressive income-tax bracket table behind ``calculateIncomeTax``.

Brackets are marginal: each slice of annualized income between one lower bound
and the next is taxed at that bracket's rate. The table is configuration, not
code; the evaluator only ever sees the resulting callable.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from nomina.core.config import IncomeTaxConfig

ZERO = Decimal("0")


@dataclass(frozen=True)
class TaxBracket:
    """Tax band definition."""

    lower: Decimal
    rate: Decimal
    upper: Optional[Decimal] = None

    def tax_for(self, annual_income: Decimal) -> Decimal:
        if annual_income <= self.lower:
            return ZERO
        top = annual_income if self.upper is None else min(annual_income, self.upper)
        return (top - self.lower) * self.rate


class IncomeTaxTable:
    """Per-period withholding computed from an annualized bracket table."""

    def __init__(
        self,
        brackets: list[tuple[Decimal, Decimal]],
        exempt_amount: Decimal = ZERO,
        annualization_factor: Decimal = Decimal("1"),
    ) -> None:
        if not brackets:
            raise ValueError("income tax table needs at least one bracket")
        if annualization_factor <= 0:
            raise ValueError("annualization_factor must be positive")
        ordered = sorted(brackets, key=lambda b: b[0])
        bounds = [lower for lower, _ in ordered]
        if len(set(bounds)) != len(bounds):
            raise ValueError("income tax brackets have duplicate lower bounds")
        self._brackets = tuple(
            TaxBracket(lower=lower, rate=rate, upper=bounds[i + 1] if i + 1 < len(bounds) else None)
            for i, (lower, rate) in enumerate(ordered)
        )
        self._exempt_amount = exempt_amount
        self._factor = annualization_factor

    @classmethod
    def from_config(cls, config: IncomeTaxConfig) -> IncomeTaxTable:
        return cls(
            brackets=[(b.lower, b.rate) for b in config.brackets],
            exempt_amount=config.exempt_amount,
            annualization_factor=config.annualization_factor,
        )

    @property
    def brackets(self) -> tuple[TaxBracket, ...]:
        return self._brackets

    def annual_tax(self, annual_income: Decimal) -> Decimal:
        return sum((b.tax_for(annual_income) for b in self._brackets), ZERO)

    def __call__(self, taxable_income: Decimal) -> Decimal:
        base = max(taxable_income - self._exempt_amount, ZERO)
        if base == ZERO:
            return ZERO
        return self.annual_tax(base * self._factor) / self._factor
