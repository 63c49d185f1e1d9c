"""Tests for covariate formula parsing."""

import pytest

from did_panel_match import ConfigurationError, CovariateTerm, parse_covariate_formula
from did_panel_match._formula import normalize_covariates


class TestParseFormula:
    def test_plain_terms(self):
        assert parse_covariate_formula("x1 + x2") == (CovariateTerm("x1"), CovariateTerm("x2"))

    def test_tilde_and_wrapped_lag(self):
        terms = parse_covariate_formula("~ pop + I(lag(gdp, 1:2))")
        assert terms == (CovariateTerm("pop", (0,)), CovariateTerm("gdp", (1, 2)))

    def test_single_lag(self):
        assert parse_covariate_formula("lag(y, 3)") == (CovariateTerm("y", (3,)),)

    def test_lag_list(self):
        assert parse_covariate_formula("lag(y, c(1, 3))") == (CovariateTerm("y", (1, 3)),)
        assert parse_covariate_formula("I(lag(y, c(1,3)))") == (CovariateTerm("y", (1, 3)),)

    def test_repeated_variable_merged(self):
        terms = parse_covariate_formula("y + lag(y, 1:2)")
        assert terms == (CovariateTerm("y", (0, 1, 2)),)
        assert terms[0].labels == ["y", "y_l1", "y_l2"]

    def test_dotted_names(self):
        assert parse_covariate_formula("trade.wb") == (CovariateTerm("trade.wb"),)

    def test_unsupported_term(self):
        with pytest.raises(ConfigurationError, match="Unsupported covariate term"):
            parse_covariate_formula("log(x)")

    def test_bad_lag_range(self):
        with pytest.raises(ConfigurationError, match="Cannot parse lag offsets"):
            parse_covariate_formula("lag(x, a:b)")

    def test_negative_lag(self):
        with pytest.raises(ConfigurationError, match="negative lag"):
            parse_covariate_formula("lag(x, -1)")

    def test_empty_formula(self):
        assert parse_covariate_formula("~ ") == ()


class TestNormalizeCovariates:
    def test_none(self):
        assert normalize_covariates(None) == ()

    def test_mixed_list(self):
        terms = normalize_covariates(["x", ("y", 2), CovariateTerm("z", (0, 1))])
        assert terms == (
            CovariateTerm("x"),
            CovariateTerm("y", (2,)),
            CovariateTerm("z", (0, 1)),
        )

    def test_unsupported_item(self):
        with pytest.raises(ConfigurationError, match="Unsupported covariate specification"):
            normalize_covariates([3.5])
