"""
Arithmetic formulas over row values, e.g. ``{Clicks} / {Impressions} * 100``.

Evaluation is two-stage: references are substituted with numbers, the result
must consist only of digits, ``+ - * / ( )``, dots and whitespace, and only
then is it parsed and evaluated by a small recursive-descent parser.  Any
failure yields None for that row.
"""

from __future__ import annotations

import logging
import math
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.models import Mapping
from engine.parsing import parse_numeric_value

logger = logging.getLogger("uvicorn.error")

_REFERENCE_RE = re.compile(r"\{([^}]+)\}")
_ALLOWED_RE = re.compile(r"^[\d\s+\-*/().]+$")
_TOKEN_RE = re.compile(r"\s*(?:(\d+\.?\d*|\.\d+)|(.))")


class FormulaError(ValueError):
    """Raised internally when a whitelisted expression is malformed."""


# ---------------------------------------------------------------------------
# Reference resolution
# ---------------------------------------------------------------------------

def _row_value_exact(name: str, row: Dict[str, Any]) -> Optional[float]:
    if name in row:
        return parse_numeric_value(row[name])
    return None


def _row_value_casefold(name: str, row: Dict[str, Any]) -> Optional[float]:
    lower = name.lower()
    for key in row:
        if isinstance(key, str) and key.lower() == lower:
            return parse_numeric_value(row[key])
    return None


def _row_value_via_mapping(
    name: str, row: Dict[str, Any], mapping: Optional[Mapping],
) -> Optional[float]:
    for field, entry in (mapping or {}).items():
        if name in (entry.column, entry.label, field):
            if entry.is_formula:
                return None
            return _row_value_exact(entry.column, row)
    return None


def resolve_reference(
    name: str, row: Dict[str, Any], mapping: Optional[Mapping] = None,
) -> Optional[float]:
    """Numeric value for ``{name}``: exact key, case-insensitive key, then mapping."""
    value = _row_value_exact(name, row)
    if value is None:
        value = _row_value_casefold(name, row)
    if value is None:
        value = _row_value_via_mapping(name, row, mapping)
    return value


def formula_references(formula: str) -> List[str]:
    return [m.strip() for m in _REFERENCE_RE.findall(formula or "")]


def _number_literal(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    # fixed-point; repr switches to exponent notation below 1e-4
    return format(Decimal(repr(value)), "f")


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _tokenize(expression: str) -> List[str]:
    tokens: List[str] = []
    for number, symbol in _TOKEN_RE.findall(expression):
        if number:
            tokens.append(number)
        elif symbol.strip():
            tokens.append(symbol)
    return tokens


class _Parser:
    """expr := term (('+'|'-') term)*; term := factor (('*'|'/') factor)*."""

    def __init__(self, tokens: List[str]):
        self.tokens = tokens
        self.pos = 0

    def _peek(self) -> Optional[str]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self) -> str:
        token = self._peek()
        if token is None:
            raise FormulaError("unexpected end of expression")
        self.pos += 1
        return token

    def parse(self) -> float:
        value = self._expr()
        if self._peek() is not None:
            raise FormulaError(f"unexpected token {self._peek()!r}")
        return value

    def _expr(self) -> float:
        value = self._term()
        while self._peek() in ("+", "-"):
            op = self._take()
            rhs = self._term()
            value = value + rhs if op == "+" else value - rhs
        return value

    def _term(self) -> float:
        value = self._factor()
        while self._peek() in ("*", "/"):
            op = self._take()
            rhs = self._factor()
            if op == "*":
                value = value * rhs
            else:
                if rhs == 0:
                    raise FormulaError("division by zero")
                value = value / rhs
        return value

    def _factor(self) -> float:
        token = self._take()
        if token == "-":
            return -self._factor()
        if token == "+":
            return self._factor()
        if token == "(":
            value = self._expr()
            if self._take() != ")":
                raise FormulaError("missing closing parenthesis")
            return value
        try:
            return float(token)
        except ValueError:
            raise FormulaError(f"unexpected token {token!r}") from None


def evaluate_expression(expression: str) -> Optional[float]:
    """Evaluate a bare arithmetic expression; None if disallowed or malformed."""
    if not _ALLOWED_RE.match(expression):
        logger.debug("Formula contains invalid characters: %r", expression)
        return None
    try:
        result = _Parser(_tokenize(expression)).parse()
    except FormulaError as e:
        logger.debug("Formula evaluation error: %s (%r)", e, expression)
        return None
    return result if math.isfinite(result) else None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def evaluate_formula(
    formula: Optional[str],
    row: Dict[str, Any],
    mapping: Optional[Mapping] = None,
) -> Optional[float]:
    """
    Evaluate *formula* against one row.

    Returns None if any reference is missing or non-numeric, if the
    substituted expression contains anything besides numbers and arithmetic,
    or if the result is not a finite number.
    """
    if not formula or not isinstance(formula, str):
        return None

    expression = formula
    for match in _REFERENCE_RE.finditer(formula):
        ref = match.group(0)
        value = resolve_reference(match.group(1).strip(), row, mapping)
        if value is None:
            return None
        expression = expression.replace(ref, _number_literal(value))

    return evaluate_expression(expression)
