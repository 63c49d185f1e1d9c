"""Tests for WeightNormalizer."""

import pytest

from did_panel_match import MatchConfig, MatchedSet, TreatedEvent, WeightNormalizer
from did_panel_match.matching.sets import REFINEMENT_FALLBACK
from did_panel_match.refinement.weights import check_weights, equal_weights


@pytest.fixture
def matched_set() -> MatchedSet:
    return MatchedSet(TreatedEvent("u", 2000.0, 3), controls=("a", "b", "c", "d"))


class TestWeightNormalizer:
    def test_unit_raw_weights_give_one_over_n(self, matched_set):
        WeightNormalizer(MatchConfig()).normalize(matched_set, {c: 1.0 for c in "abcd"})
        assert matched_set.weights == {"a": 0.25, "b": 0.25, "c": 0.25, "d": 0.25}

    def test_proportional(self, matched_set):
        raw = {"a": 3.0, "b": 1.0, "c": 0.0, "d": 0.0}
        WeightNormalizer(MatchConfig()).normalize(matched_set, raw)
        assert matched_set.weights == {"a": 0.75, "b": 0.25, "c": 0.0, "d": 0.0}
        assert check_weights(matched_set)

    def test_excluded_get_zero(self, matched_set):
        raw = {c: 1.0 for c in "abcd"}
        WeightNormalizer(MatchConfig()).normalize(matched_set, raw, excluded=("b",))
        assert matched_set.weights["b"] == 0.0
        assert matched_set.weights["a"] == pytest.approx(1 / 3)
        assert check_weights(matched_set)

    def test_equal_weights_over_retained(self, matched_set):
        raw = {"a": 3.0, "b": 1.0, "c": 0.0, "d": 0.0}
        WeightNormalizer(MatchConfig(use_equal_weights=True)).normalize(matched_set, raw)
        assert matched_set.weights == {"a": 0.5, "b": 0.5, "c": 0.0, "d": 0.0}

    def test_zero_total_falls_back(self, matched_set):
        WeightNormalizer(MatchConfig()).normalize(matched_set, {})
        assert matched_set.weights == {"a": 0.25, "b": 0.25, "c": 0.25, "d": 0.25}
        assert REFINEMENT_FALLBACK in matched_set.flags

    def test_all_excluded_is_empty(self, matched_set):
        WeightNormalizer(MatchConfig()).normalize(matched_set, {}, excluded=tuple("abcd"))
        assert matched_set.is_empty
        assert check_weights(matched_set)

    def test_negative_raw_raises(self, matched_set):
        with pytest.raises(ValueError, match="Negative raw weights"):
            WeightNormalizer(MatchConfig()).normalize(matched_set, {"a": -1.0})

    def test_no_controls(self):
        ms = MatchedSet(TreatedEvent("u", 2000.0, 3))
        WeightNormalizer(MatchConfig()).normalize(ms, {})
        assert ms.weights == {}


def test_equal_weights():
    assert equal_weights(["a", "b"]) == {"a": 0.5, "b": 0.5}
    assert equal_weights([]) == {}
