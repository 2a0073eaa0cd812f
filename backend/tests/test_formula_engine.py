"""
Tests for erp.services.formula_engine — sandboxed formula evaluation.

Covers:
    - Arithmetic, precedence, functions and constants
    - Ternaries with string parameters
    - Rejection of injected code, unknown names and unsafe arithmetic
    - variables() / validate()
"""
import math

import pytest

from erp.services.errors import FormulaEvaluationError
from erp.services.formula_engine import (
    available_functions,
    evaluate,
    evaluate_condition,
    validate,
    variables,
)


class TestArithmetic:

    def test_linear_formula(self):
        """3 * 1500 + 1 * 500 = 5000."""
        assert evaluate("height * 1500 + width * 500", {"height": 3, "width": 1}) == 5000

    def test_precedence_and_parentheses(self):
        assert evaluate("2 + 3 * 4") == 14
        assert evaluate("(2 + 3) * 4") == 20
        assert evaluate("-2 * -3") == 6

    def test_modulo(self):
        assert evaluate("7 % 3") == 1

    def test_functions(self):
        assert evaluate("ceil(2.1) + floor(2.9)") == 5
        assert evaluate("max(1, 5, 3) - min(4, 2)") == 3
        assert evaluate("Math.sqrt(16) + pow(2, 3)") == 12
        assert evaluate("abs(-4.5)") == 4.5

    def test_round_is_half_up(self):
        assert evaluate("round(2.5)") == 3
        assert evaluate("round(-2.5)") == -2

    def test_pi_constant(self):
        assert evaluate("PI * 2") == pytest.approx(2 * math.pi)
        assert evaluate("Math.PI") == pytest.approx(math.pi)

    def test_boolean_result_is_numeric(self):
        assert evaluate("width > 2", {"width": 3}) == 1.0
        assert evaluate("width > 2", {"width": 1}) == 0.0

    def test_deterministic(self):
        ctx = {"area": 2.75, "rate": 1.1}
        results = {evaluate("area * rate + 0.3", ctx) for _ in range(10)}
        assert len(results) == 1


class TestConditionals:

    def test_ternary_on_string_parameter(self):
        formula = "material === 'oak' ? area * 1.2 : area"
        assert evaluate(formula, {"material": "oak", "area": 10}) == pytest.approx(12)
        assert evaluate(formula, {"material": "pine", "area": 10}) == pytest.approx(10)

    def test_string_never_equals_number(self):
        assert evaluate_condition("finish == 1", {"finish": "1"}) is False

    def test_logical_operators(self):
        ctx = {"doors": 2, "mirror": "yes"}
        assert evaluate_condition("doors > 0 && mirror === 'yes'", ctx) is True
        assert evaluate_condition("doors > 2 || mirror !== 'yes'", ctx) is False
        assert evaluate_condition("!(doors > 2)", ctx) is True


class TestRejection:

    @pytest.mark.parametrize("formula", [
        "1; require('fs')",
        "__import__('os')",
        "width.__class__",
        "width[0]",
        "open('x')",
    ])
    def test_injected_code_is_rejected(self, formula):
        with pytest.raises(FormulaEvaluationError):
            evaluate(formula, {"width": 1})

    def test_unknown_variable(self):
        with pytest.raises(FormulaEvaluationError) as exc:
            evaluate("width * height", {"width": 2})
        assert exc.value.details["variable"] == "height"

    def test_none_variable_is_unknown(self):
        with pytest.raises(FormulaEvaluationError):
            evaluate("width + 1", {"width": None})

    def test_division_by_zero(self):
        with pytest.raises(FormulaEvaluationError):
            evaluate("10 / (width - 2)", {"width": 2})

    def test_sqrt_of_negative(self):
        with pytest.raises(FormulaEvaluationError):
            evaluate("sqrt(-1)")

    def test_text_result_is_not_a_number(self):
        with pytest.raises(FormulaEvaluationError):
            evaluate("finish", {"finish": "matte"})

    def test_wrong_arity(self):
        with pytest.raises(FormulaEvaluationError):
            evaluate("pow(2)")

    def test_empty_and_unbalanced(self):
        with pytest.raises(FormulaEvaluationError):
            evaluate("   ")
        with pytest.raises(FormulaEvaluationError):
            evaluate("(1 + 2")

    def test_overflow_is_reported(self):
        with pytest.raises(FormulaEvaluationError):
            evaluate("pow(10, 400)")


class TestIntrospection:

    def test_variables(self):
        assert variables("ceil(width / 0.5) * height + PI") == {"width", "height"}

    def test_validate_known_names(self):
        check = validate("width * height", allowed_names=["width", "height"])
        assert check.valid
        assert check.unknown_variables == []

    def test_validate_reports_unknown_names(self):
        check = validate("width * depth", allowed_names=["width"])
        assert not check.valid
        assert check.unknown_variables == ["depth"]

    def test_validate_syntax_error(self):
        check = validate("width * * 2")
        assert not check.valid
        assert check.error

    def test_available_functions(self):
        names = available_functions()
        assert "sqrt" in names and "PI" in names
