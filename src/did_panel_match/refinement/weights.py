"""Weight normalization within matched sets."""

from __future__ import annotations

import logging
from typing import Collection, Hashable, Mapping

import numpy as np

from .._types import MatchConfig
from ..matching.sets import REFINEMENT_FALLBACK, MatchedSet

logger = logging.getLogger(__name__)


class WeightNormalizer:
    """Turn raw refinement weights into per-control weights summing to 1.

    Controls excluded by listwise deletion always get weight 0; the
    remaining weights are normalized over the controls that are kept.
    With ``use_equal_weights`` every control the refinement retained
    (positive raw weight) gets the same weight.

    Parameters
    ----------
    config : MatchConfig
        Matching options. Uses ``use_equal_weights``.
    """

    def __init__(self, config: MatchConfig):
        self.config = config

    def normalize(
        self,
        ms: MatchedSet,
        raw: Mapping[Hashable, float],
        excluded: Collection[Hashable] = (),
    ) -> MatchedSet:
        """Write normalized weights onto ``ms`` in place.

        Parameters
        ----------
        ms : MatchedSet
            Set to update.
        raw : Mapping
            Raw non-negative weight per control. Missing controls count as 0.
        excluded : Collection
            Controls removed by the missing-data policy.

        Returns
        -------
        MatchedSet
            The same set, for chaining.
        """
        if not ms.controls:
            ms.weights = {}
            return ms

        excluded = set(excluded)
        eligible = [c for c in ms.controls if c not in excluded]
        values = np.array([float(raw.get(c, 0.0)) for c in eligible], dtype=float)
        if np.any(values < 0):
            raise ValueError(f"Negative raw weights for event {ms.event}")
        values = np.where(np.isfinite(values), values, 0.0)

        if self.config.use_equal_weights:
            values = (values > 0).astype(float)

        total = values.sum()
        if eligible and total <= 0:
            logger.warning(
                "Event %s: all raw weights are zero; using equal weights", ms.event
            )
            values = np.ones(len(eligible))
            total = float(len(eligible))
            ms.flag(REFINEMENT_FALLBACK)

        weights = {c: 0.0 for c in ms.controls}
        if eligible:
            normalized = values / total
            weights.update(zip(eligible, normalized.tolist()))
        ms.weights = weights
        return ms


def equal_weights(controls: Collection[Hashable]) -> dict[Hashable, float]:
    """1/n for each control."""
    n = len(controls)
    return {c: 1.0 / n for c in controls} if n else {}


def check_weights(ms: MatchedSet, tol: float = 1e-9) -> bool:
    """True if weights are non-negative and sum to 1 (or the set is empty)."""
    if ms.is_empty:
        return all(w == 0 for w in ms.weights.values())
    values = np.array(list(ms.weights.values()), dtype=float)
    return bool(np.all(values >= 0) and abs(values.sum() - 1.0) <= tol)
