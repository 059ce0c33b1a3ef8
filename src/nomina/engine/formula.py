"""Formula evaluator for payroll concepts.

Formulas are arithmetic over a fixed vocabulary of named quantities:
numeric literals, ``+ - * /``, unary signs, parentheses and calls to a small
set of named pure functions such as ``calculateIncomeTax(taxable_income)``.
They are parsed once with :mod:`ast` into an immutable :class:`CompiledFormula`
and evaluated in :class:`~decimal.Decimal` arithmetic, so the same formula and
variables always produce the same amount.
"""

from __future__ import annotations

import ast
import operator
from dataclasses import dataclass
from decimal import (
    ROUND_HALF_EVEN,
    Decimal,
    DivisionByZero,
    InvalidOperation,
    localcontext,
)
from typing import Callable, Mapping, Optional

from nomina.core.config import IncomeTaxConfig
from nomina.core.exceptions import FormulaError
from nomina.engine.income_tax import IncomeTaxTable
from nomina.engine.money import to_money

# Known from the start of the earnings pass.
EARNINGS_PASS_VARIABLES = frozenset({
    "base_salary",
    "worked_days",
    "worked_hours",
    "overtime_hours",
    "break_hours",
    "period_days",
    "paid_leave_days",
    "unpaid_leave_days",
    "leave_deductions",
    "cesantias_accumulated",
})

# Only final once every earning has been evaluated.
DEDUCTIONS_PASS_VARIABLES = frozenset({
    "taxable_income",
    "gross_earnings",
    "social_security_base",
})

BASE_VOCABULARY = EARNINGS_PASS_VARIABLES | DEDUCTIONS_PASS_VARIABLES

ALIASES = {"days_worked": "worked_days"}

_BINARY_OPS: dict[type, Callable[[Decimal, Decimal], Decimal]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}

_UNARY_OPS: dict[type, Callable[[Decimal], Decimal]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_ALLOWED_NODES = (
    ast.Expression,
    ast.BinOp,
    ast.UnaryOp,
    ast.Constant,
    ast.Name,
    ast.Call,
    ast.Load,
    *_BINARY_OPS,
    *_UNARY_OPS,
)


@dataclass(frozen=True)
class FormulaFunction:
    """A named pure function callable from formulas."""

    name: str
    impl: Callable[..., Decimal]
    min_args: int = 1
    max_args: Optional[int] = 1

    def accepts(self, count: int) -> bool:
        return count >= self.min_args and (self.max_args is None or count <= self.max_args)


def default_functions(tax_table: IncomeTaxTable) -> dict[str, FormulaFunction]:
    """Function table for the given income-tax brackets."""
    functions = [
        FormulaFunction("calculateIncomeTax", tax_table),
        FormulaFunction("min", lambda *args: min(args), min_args=1, max_args=None),
        FormulaFunction("max", lambda *args: max(args), min_args=1, max_args=None),
        FormulaFunction("round2", to_money),
    ]
    return {f.name: f for f in functions}


@dataclass(frozen=True)
class CompiledFormula:
    """Parsed, validated and reusable formula."""

    source: str
    tree: ast.Expression
    variables: frozenset[str]
    functions: frozenset[str]

    def evaluate(
        self,
        variables: Mapping[str, Decimal],
        functions: Mapping[str, FormulaFunction],
    ) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = 28
            ctx.rounding = ROUND_HALF_EVEN
            ctx.traps[DivisionByZero] = True
            ctx.traps[InvalidOperation] = True
            try:
                result = _Evaluator(self.source, variables, functions).visit(self.tree.body)
            except (DivisionByZero, ZeroDivisionError) as exc:
                raise FormulaError(self.source, "division by zero") from exc
            except InvalidOperation as exc:
                raise FormulaError(self.source, f"invalid arithmetic: {exc}") from exc
        return result


class _Evaluator:
    def __init__(
        self,
        source: str,
        variables: Mapping[str, Decimal],
        functions: Mapping[str, FormulaFunction],
    ) -> None:
        self._source = source
        self._variables = variables
        self._functions = functions

    def visit(self, node: ast.AST) -> Decimal:
        if isinstance(node, ast.Constant):
            return _literal(self._source, node)

        if isinstance(node, ast.Name):
            name = ALIASES.get(node.id, node.id)
            if name not in self._variables:
                raise FormulaError(self._source, f"unknown variable {node.id!r}")
            return Decimal(self._variables[name])

        if isinstance(node, ast.BinOp):
            op = _BINARY_OPS[type(node.op)]
            return op(self.visit(node.left), self.visit(node.right))

        if isinstance(node, ast.UnaryOp):
            return _UNARY_OPS[type(node.op)](self.visit(node.operand))

        if isinstance(node, ast.Call):
            func = self._functions.get(node.func.id)  # type: ignore[attr-defined]
            if func is None:
                raise FormulaError(self._source, f"unknown function {node.func.id!r}")  # type: ignore[attr-defined]
            if not func.accepts(len(node.args)):
                raise FormulaError(self._source, f"{func.name}() called with {len(node.args)} arguments")
            return Decimal(func.impl(*(self.visit(arg) for arg in node.args)))

        raise FormulaError(self._source, f"unsupported element {type(node).__name__}")


def _literal(source: str, node: ast.Constant) -> Decimal:
    if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
        raise FormulaError(source, f"unsupported literal {node.value!r}")
    text = ast.get_source_segment(source, node) or str(node.value)
    try:
        return Decimal(text.replace("_", ""))
    except InvalidOperation as exc:
        raise FormulaError(source, f"bad numeric literal {text!r}") from exc


def parse_formula(source: str) -> CompiledFormula:
    """Parse ``source`` into an immutable AST, rejecting anything outside the grammar."""
    text = (source or "").strip()
    if not text:
        raise FormulaError(source or "", "formula is empty")
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as exc:
        raise FormulaError(text, f"syntax error: {exc.msg}") from exc

    variables: set[str] = set()
    functions: set[str] = set()
    callee_nodes: set[int] = set()
    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            raise FormulaError(text, f"unsupported expression element {type(node).__name__}")
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.keywords:
                raise FormulaError(text, "only plain calls to named functions are allowed")
            functions.add(node.func.id)
            callee_nodes.add(id(node.func))
        elif isinstance(node, ast.Name) and id(node) not in callee_nodes:
            variables.add(node.id)
        elif isinstance(node, ast.Constant):
            _literal(text, node)

    canonical = frozenset(ALIASES.get(name, name) for name in variables)
    return CompiledFormula(source=text, tree=tree, variables=canonical, functions=frozenset(functions))


def check_formula(
    compiled: CompiledFormula,
    vocabulary: frozenset[str],
    functions: Mapping[str, FormulaFunction],
) -> None:
    """Static checks: identifiers, function names, arity, literal division by zero."""
    unknown = compiled.variables - vocabulary
    if unknown:
        raise FormulaError(compiled.source, f"unknown variable(s) {', '.join(sorted(unknown))}")
    for node in ast.walk(compiled.tree):
        if isinstance(node, ast.Call):
            func = functions.get(node.func.id)  # type: ignore[attr-defined]
            if func is None:
                raise FormulaError(compiled.source, f"unknown function {node.func.id!r}")  # type: ignore[attr-defined]
            if not func.accepts(len(node.args)):
                raise FormulaError(compiled.source, f"{func.name}() called with {len(node.args)} arguments")
        elif isinstance(node, ast.BinOp) and isinstance(node.op, ast.Div) and _is_literal_zero(node.right):
            raise FormulaError(compiled.source, "division by zero")


def _is_literal_zero(node: ast.AST) -> bool:
    while isinstance(node, ast.UnaryOp):
        node = node.operand
    return isinstance(node, ast.Constant) and not isinstance(node.value, bool) and node.value == 0


def compile_formula(
    source: str,
    vocabulary: frozenset[str],
    functions: Mapping[str, FormulaFunction],
) -> CompiledFormula:
    compiled = parse_formula(source)
    check_formula(compiled, vocabulary, functions)
    return compiled


def split_percentage(compiled: CompiledFormula) -> tuple[str, Decimal]:
    """Decompose a percentage rule ``<base-variable> * <rate>`` (either operand order)."""
    body = compiled.tree.body
    if isinstance(body, ast.BinOp) and isinstance(body.op, ast.Mult):
        for var_node, rate_node in ((body.left, body.right), (body.right, body.left)):
            if isinstance(var_node, ast.Name) and isinstance(rate_node, ast.Constant):
                return ALIASES.get(var_node.id, var_node.id), _literal(compiled.source, rate_node)
    raise FormulaError(compiled.source, "percentage rule must be '<base-variable> * <rate>'")


def evaluate(
    formula: str | CompiledFormula,
    variables: Mapping[str, Decimal],
    functions: Optional[Mapping[str, FormulaFunction]] = None,
) -> Decimal:
    """Evaluate ``formula`` against ``variables``; raises :class:`FormulaError`."""
    compiled = formula if isinstance(formula, CompiledFormula) else parse_formula(formula)
    if functions is None:
        functions = default_functions(IncomeTaxTable.from_config(IncomeTaxConfig()))
    return compiled.evaluate(variables, functions)
