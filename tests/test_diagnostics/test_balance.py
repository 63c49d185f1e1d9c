"""Tests for BalanceCalculator."""

import numpy as np
import pytest

from did_panel_match import BalanceCalculator, ConfigurationError, MatchConfig, PanelMatcher


@pytest.fixture
def refined_result(scenario_panel, config):
    match_config = MatchConfig(
        lag=1, lead=(0, 1), refinement_method="mahalanobis", covariates="x", size_match=1
    )
    return PanelMatcher(scenario_panel, config, match_config).match()


class TestBalanceCalculator:
    def test_default_offsets(self, refined_result, scenario_panel):
        calc = BalanceCalculator(refined_result, scenario_panel)
        assert calc.default_offsets() == [-1, 0, 1]

    def test_refined_balance(self, refined_result, scenario_panel):
        table = BalanceCalculator(refined_result, scenario_panel).compute()
        sd = np.std(scenario_panel["x"], ddof=1)
        assert table.index.name == "offset"
        assert list(table.columns) == ["x"]
        assert table.loc[0, "x"] == pytest.approx((1.0 - 0.9) / sd)

    def test_equal_weight_baseline(self, refined_result, scenario_panel):
        table = BalanceCalculator(refined_result, scenario_panel).compute(use_equal_weights=True)
        sd = np.std(scenario_panel["x"], ddof=1)
        assert table.loc[0, "x"] == pytest.approx((1.0 - 1.95) / sd)

    def test_refinement_improves_balance(self, refined_result, scenario_panel):
        compared = BalanceCalculator(refined_result, scenario_panel).compare()
        assert list(compared.columns) == ["covariate", "offset", "refined", "unrefined"]
        assert (compared["refined"].abs() < compared["unrefined"].abs()).all()

    def test_offset_outside_panel_is_nan(self, refined_result, scenario_panel):
        table = BalanceCalculator(refined_result, scenario_panel).compute(offsets=[-5, 0])
        assert np.isnan(table.loc[-5, "x"])

    def test_explicit_covariates(self, scenario_panel, config):
        result = PanelMatcher(scenario_panel, config, MatchConfig(lag=1)).match()
        table = BalanceCalculator(result, scenario_panel, covariates=["x", "y"]).compute()
        assert list(table.columns) == ["x", "y"]

    def test_no_covariates_raises(self, scenario_panel, config):
        result = PanelMatcher(scenario_panel, config, MatchConfig(lag=1)).match()
        with pytest.raises(ConfigurationError, match="at least one covariate"):
            BalanceCalculator(result, scenario_panel)

    def test_unknown_covariate_raises(self, refined_result, scenario_panel):
        with pytest.raises(ConfigurationError, match="gdp"):
            BalanceCalculator(refined_result, scenario_panel, covariates=["gdp"])
