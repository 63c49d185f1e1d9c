"""Tests for PanelMatcher and the panel_match shortcut."""

import pytest

from did_panel_match import (
    ConfigurationError,
    MatchConfig,
    MatchingResult,
    PanelIndex,
    PanelMatcher,
    panel_match,
)
from did_panel_match.refinement.weights import check_weights


class TestPanelMatcher:
    def test_end_to_end_scenario(self, scenario_panel, config):
        result = PanelMatcher(scenario_panel, config, MatchConfig(lag=1, lead=(0, 1))).match()
        assert isinstance(result, MatchingResult)
        (ms,) = result["att"]
        assert ms.unit == 1
        assert ms.time == 1991.0
        assert ms.controls == (2, 3)
        assert dict(ms.weights) == {2: 0.5, 3: 0.5}

    def test_accepts_index(self, scenario_panel, config):
        index = PanelIndex(scenario_panel, config=config)
        result = PanelMatcher(index, match_config=MatchConfig(lag=1)).match()
        assert result.panel_config == config
        assert len(result.matched_sets) == 1

    def test_weights_sum_to_one(self, random_panel, config):
        result = PanelMatcher(random_panel, config, MatchConfig(lag=2, lead=2)).match()
        for ms in result.matched_sets:
            assert check_weights(ms)
            if not ms.is_empty:
                assert len(set(ms.weights.values())) == 1

    def test_sets_are_frozen(self, scenario_panel, config):
        result = PanelMatcher(scenario_panel, config, MatchConfig(lag=1)).match()
        ms = result.matched_sets[0]
        with pytest.raises(AttributeError):
            ms.controls = ()
        with pytest.raises(TypeError):
            ms.weights[2] = 1.0
        with pytest.raises(AttributeError):
            ms.flag("edited")

    def test_multiple_qois(self, reverse_panel, config):
        result = PanelMatcher(reverse_panel, config, MatchConfig(lag=1)).match(["att", "atc", "art"])
        assert result.qois == ["att", "atc", "art"]
        assert result["att"] == ()
        assert result["atc"][0].controls == (2, 3)
        assert result["art"][0].controls == (2, 3)

    def test_unknown_qoi_raises(self, scenario_panel, config):
        matcher = PanelMatcher(scenario_panel, config, MatchConfig(lag=1))
        with pytest.raises(ConfigurationError, match="Unknown qoi"):
            matcher.match(["ate"])

    def test_missing_covariate_raises_before_matching(self, scenario_panel, config):
        match_config = MatchConfig(lag=1, refinement_method="mahalanobis", covariates="gdp")
        with pytest.raises(ConfigurationError, match="gdp"):
            PanelMatcher(scenario_panel, config, match_config).match()

    def test_missing_qoi_lookup(self, scenario_panel, config):
        result = PanelMatcher(scenario_panel, config, MatchConfig(lag=1)).match()
        with pytest.raises(KeyError, match="No matched sets for qoi 'atc'"):
            result["atc"]

    def test_result_is_cached(self, scenario_panel, config):
        matcher = PanelMatcher(scenario_panel, config, MatchConfig(lag=1))
        assert matcher.result is matcher.result

    def test_reversal_scenario(self, reversal_panel, config):
        match_config = MatchConfig(lag=1, lead=2, forbid_treatment_reversal=True)
        result = PanelMatcher(reversal_panel, config, match_config).match()
        first = result.matched_sets[0]
        assert first.unit == 1
        assert dict(first.weights) == {3: 1.0}

    def test_three_period_history_scenario(self, scenario_panel, config):
        result = PanelMatcher(scenario_panel, config, MatchConfig(lag=3, lead=(0, 1))).match()
        (ms,) = result["att"]
        assert (ms.unit, ms.time) == (1, 1991.0)
        assert dict(ms.weights) == {2: 0.5, 3: 0.5}

    @pytest.mark.parametrize("forbid, controls", [(True, (3,)), (False, (2, 3))])
    def test_three_period_reversal_scenario(self, reversal_panel, config, forbid, controls):
        match_config = MatchConfig(lag=3, lead=2, forbid_treatment_reversal=forbid)
        first = PanelMatcher(reversal_panel, config, match_config).match().matched_sets[0]
        assert (first.unit, first.time) == (1, 1991.0)
        assert first.controls == controls


class TestResultViews:
    def test_summary(self, scenario_panel, config):
        result = PanelMatcher(scenario_panel, config, MatchConfig(lag=4)).match()
        summary = result.summary()
        assert list(summary.columns) == [
            "unit_id", "year", "n_controls", "n_weighted", "is_empty", "flags"
        ]
        assert summary["is_empty"].tolist() == [True]
        assert summary["flags"].tolist() == ["history_out_of_range"]

    def test_to_frame(self, scenario_panel, config):
        result = PanelMatcher(scenario_panel, config, MatchConfig(lag=1)).match()
        frame = result.to_frame()
        assert frame["control"].tolist() == [2, 3]
        assert frame["weight"].sum() == pytest.approx(1.0)

    def test_set_sizes(self, random_panel, config):
        result = PanelMatcher(random_panel, config, MatchConfig(lag=1)).match()
        sizes = result.set_sizes()
        assert sizes.sum() == len(result.matched_sets)

    def test_flagged(self, reversal_panel, config):
        result = PanelMatcher(reversal_panel, config, MatchConfig(lag=6)).match()
        assert [ms.unit for ms in result.flagged("history_out_of_range")] == [1, 2]


class TestPanelMatchShortcut:
    def test_dotted_options(self, scenario_panel, config):
        result = panel_match(
            scenario_panel,
            config,
            lag=1,
            **{"refinement.method": "mahalanobis", "covs.formula": "x", "size.match": 1},
        )
        ms = result.matched_sets[0]
        assert dict(ms.weights) == {2: 1.0, 3: 0.0}

    def test_unknown_option_raises(self, scenario_panel, config):
        with pytest.raises(ConfigurationError, match="Unknown option"):
            panel_match(scenario_panel, config, lags=1)
