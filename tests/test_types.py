"""Tests for configuration objects."""

import dataclasses

import numpy as np

import pytest

from did_panel_match import (
    BootstrapConfig,
    ConfigurationError,
    CovariateTerm,
    MatchConfig,
    PanelConfig,
)


class TestMatchConfig:
    def test_defaults(self):
        cfg = MatchConfig()
        assert cfg.lag == 1
        assert cfg.lead == (0,)
        assert cfg.qoi == "att"
        assert cfg.refinement_method == "none"
        assert cfg.size_match == 10

    def test_int_lead_expands(self):
        assert MatchConfig(lead=3).lead == (0, 1, 2, 3)

    def test_lead_sorted_unique(self):
        assert MatchConfig(lead=[2, 0, 2]).lead == (0, 2)

    def test_covariate_formula_parsed(self):
        cfg = MatchConfig(refinement_method="mahalanobis", covariates="x + lag(y, 1:2)")
        assert cfg.covariates == (CovariateTerm("x"), CovariateTerm("y", (1, 2)))
        assert cfg.covariate_labels == ["x", "y_l1", "y_l2"]

    def test_reference_status(self):
        assert MatchConfig(qoi="att").reference_status == 0
        assert MatchConfig(qoi="atc").reference_status == 1
        assert MatchConfig(qoi="art").reference_status == 1

    @pytest.mark.parametrize(
        "options, message",
        [
            ({"lag": 0}, "lag must be"),
            ({"lead": -1}, "lead offsets"),
            ({"lead": []}, "at least one offset"),
            ({"qoi": "ate"}, "qoi must be"),
            ({"refinement_method": "nearest"}, "refinement_method must be"),
            ({"size_match": 0}, "size_match must be"),
            ({"refinement_method": "ps.match"}, "non-empty covariate formula"),
            ({"propensity_pool": "global"}, "propensity_pool"),
        ],
    )
    def test_invalid_options(self, options, message):
        with pytest.raises(ConfigurationError, match=message):
            MatchConfig(**options)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            MatchConfig(lag=0)

    def test_numpy_integers_accepted(self):
        cfg = MatchConfig(lag=np.int64(3), lead=np.int64(2), size_match=np.int32(4))
        assert cfg.lag == 3 and type(cfg.lag) is int
        assert cfg.lead == (0, 1, 2)
        assert cfg.size_match == 4

    @pytest.mark.parametrize("field_name", ["lag", "size_match"])
    def test_bool_is_not_an_integer(self, field_name):
        with pytest.raises(ConfigurationError, match=f"{field_name} must be"):
            MatchConfig(**{field_name: True})

    def test_frozen(self):
        cfg = MatchConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.lag = 2

    def test_from_dict_dotted_names(self):
        cfg = MatchConfig.from_dict({
            "lag": 4,
            "refinement.method": "CBPS.weight",
            "covs.formula": "~ tradewb",
            "size.match": 5,
            "forbid.treatment.reversal": True,
        })
        assert cfg.refinement_method == "CBPS.weight"
        assert cfg.size_match == 5
        assert cfg.forbid_treatment_reversal
        assert cfg.covariates == (CovariateTerm("tradewb"),)

    def test_from_dict_unknown_key(self):
        with pytest.raises(ConfigurationError, match="Unknown option 'verbose'"):
            MatchConfig.from_dict({"verbose": True})


class TestPanelConfig:
    def test_from_dict_aliases(self):
        cfg = PanelConfig.from_dict({"unit.id": "wbcode2", "time.id": "year", "treatment": "dem"})
        assert cfg == PanelConfig(unit_col="wbcode2", time_col="year", treatment_col="dem")


class TestBootstrapConfig:
    def test_defaults(self):
        cfg = BootstrapConfig()
        assert cfg.iterations == 1000
        assert cfg.confidence_level == 0.95
        assert cfg.ci_method == "percentile"

    @pytest.mark.parametrize(
        "options, message",
        [
            ({"iterations": 0}, "iterations"),
            ({"confidence_level": 1.0}, "confidence_level"),
            ({"ci_method": "bca"}, "ci_method"),
            ({"resample_by": "cluster"}, "resample_by"),
            ({"chunk_size": 0}, "chunk_size"),
        ],
    )
    def test_invalid_options(self, options, message):
        with pytest.raises(ConfigurationError, match=message):
            BootstrapConfig(**options)

    def test_numpy_integers_accepted(self):
        cfg = BootstrapConfig(iterations=np.int64(5), chunk_size=np.int64(2))
        assert cfg.iterations == 5 and type(cfg.iterations) is int
        assert cfg.chunk_size == 2

    def test_from_dict(self):
        cfg = BootstrapConfig.from_dict({"number.iterations": 50, "se.method": "normal", "seed": 3})
        assert cfg.iterations == 50
        assert cfg.ci_method == "normal"
        assert cfg.seed == 3
