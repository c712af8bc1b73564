"""
Tests for the restricted arithmetic formula evaluator.
"""

import pytest

from engine.formula import evaluate_expression, evaluate_formula, formula_references
from engine.mapping import normalize_mapping


class TestEvaluateFormula:
    """Tests for reference substitution and evaluation."""

    def test_simple_sum(self):
        assert evaluate_formula("{a} + {b}", {"a": 2, "b": 3}, {}) == 5

    def test_missing_reference(self):
        assert evaluate_formula("{missing}", {"a": 1}, {}) is None

    def test_injection_rejected(self):
        assert evaluate_formula("{a}; DROP TABLE", {"a": 1}, {}) is None
        assert evaluate_formula("__import__('os')", {}, {}) is None

    def test_precedence_and_parentheses(self):
        row = {"Clicks": 25, "Impressions": 1000}
        assert evaluate_formula("{Clicks} / {Impressions} * 100", row) == pytest.approx(2.5)
        assert evaluate_formula("({a} + {b}) * 2", {"a": 1, "b": 2}) == 6
        assert evaluate_formula("{a} + {b} * 2", {"a": 1, "b": 2}) == 5

    def test_column_names_with_spaces_and_case(self):
        row = {"Attributed Sales": "$1,200", "Ad Spend": 300}
        assert evaluate_formula("{attributed sales} / { Ad Spend }", row) == 4

    def test_repeated_reference(self):
        assert evaluate_formula("{x} * {x}", {"x": 3}) == 9

    def test_negative_values(self):
        assert evaluate_formula("{a} - {b}", {"a": 10, "b": -5}) == 15

    def test_non_numeric_cell(self):
        assert evaluate_formula("{a} + 1", {"a": "n/a"}) is None
        assert evaluate_formula("{a} + 1", {"a": None}) is None

    def test_division_by_zero(self):
        assert evaluate_formula("{a} / {b}", {"a": 1, "b": 0}) is None

    def test_small_fractions(self):
        assert evaluate_formula("{a} * 2", {"a": 0.00005}) == pytest.approx(0.0001)
        assert evaluate_formula("{a} + 1", {"a": "0.00002"}) == pytest.approx(1.00002)
        assert evaluate_formula("{a} - {b}", {"a": 1e-7, "b": -1e-7}) == pytest.approx(2e-7)

    def test_literals_only(self):
        assert evaluate_formula("1.5 * 4", {}) == 6

    @pytest.mark.parametrize("formula", [None, "", 42])
    def test_empty_formula(self, formula):
        assert evaluate_formula(formula, {"a": 1}) is None

    def test_mapping_lookup_by_field_and_label(self):
        mapping = normalize_mapping({
            "attributableSales": {"column": "Revenue USD", "label": "Sales"},
        })
        row = {"Revenue USD": 500, "Spend": 100}
        assert evaluate_formula("{attributableSales} / {Spend}", row, mapping) == 5
        assert evaluate_formula("{Sales} / {Spend}", row, mapping) == 5

    def test_mapping_formula_fields_do_not_resolve(self):
        mapping = normalize_mapping({"roas": {"column": "__formula__", "formula": "{a} / {b}"}})
        assert evaluate_formula("{roas} * 2", {"a": 4, "b": 2}, mapping) is None

    def test_formula_references(self):
        assert formula_references("{ a } + {B c}") == ["a", "B c"]


class TestEvaluateExpression:
    """Tests for the whitelisted arithmetic parser."""

    @pytest.mark.parametrize("expression,expected", [
        ("1 + 2 * 3", 7),
        ("(1 + 2) * 3", 9),
        ("10 / 4", 2.5),
        ("-3 + 5", 2),
        ("2 * -(1 + 1)", -4),
        ("8 - 2 - 1", 5),
        ("16 / 4 / 2", 2),
        (".5 + 1.", 1.5),
    ])
    def test_arithmetic(self, expression, expected):
        assert evaluate_expression(expression) == pytest.approx(expected)

    @pytest.mark.parametrize("expression", [
        "1 +", "(1 + 2", "1 2", "1.2.3", "()", "2 ** 3x", "abs(1)", "1e5",
    ])
    def test_malformed_or_disallowed(self, expression):
        assert evaluate_expression(expression) is None
