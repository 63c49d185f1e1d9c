"""Refinement engine: score, select and weight the controls of each matched set.

Every refinement method is a plain function with the same signature,
registered in a dispatch table keyed by the method name. A method gets
the prepared covariates of one matched set and returns a raw score and a
raw (unnormalized) weight per kept control:

- ``none``: score 1, weight 1 for every control; no covariates used.
- ``mahalanobis``: score = distance; the ``size_match`` nearest controls
  get weight 1.
- ``ps.match`` / ``CBPS.match``: score = propensity; the ``size_match``
  controls closest to the event unit's propensity get weight 1.
- ``ps.weight`` / ``CBPS.weight``: weight = p / (1 - p) for every control.
- ``ps.msm.weight`` / ``CBPS.msm.weight``: one model per lead offset,
  weight = product over leads of p / (1 - p).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Hashable, Sequence

import numpy as np
from joblib import Parallel, delayed

from .._errors import RefinementConvergenceError
from .._types import MatchConfig
from ..matching.sets import LISTWISE_DELETED, REFINEMENT_FALLBACK, MatchedSet
from ..panels.index import PanelIndex
from .covariates import apply_missing_policy, covariate_matrix, validate_covariates
from .distance import mahalanobis_distances, nearest
from .propensity import fit_propensity, odds
from .weights import WeightNormalizer

logger = logging.getLogger(__name__)


@dataclass
class SetData:
    """Covariates of one matched set, one block per measurement period."""

    treated: list[np.ndarray]
    controls: list[np.ndarray]
    keep: np.ndarray
    treated_missing: bool = False
    # Lead offset each block is measured at (0 outside msm weighting)
    offsets: list[int] = field(default_factory=lambda: [0])
    # Pooled propensity scores, if fitted across sets: (treated, controls) per block
    pooled: list[tuple[float, np.ndarray]] | None = None
    pooled_error: str | None = None


@dataclass
class Refinement:
    """Outcome of refining one matched set (not yet applied to it)."""

    scores: dict[Hashable, float] = field(default_factory=dict)
    raw_weights: dict[Hashable, float] = field(default_factory=dict)
    excluded: tuple[Hashable, ...] = ()
    flags: set[str] = field(default_factory=set)
    error: str | None = None


Strategy = Callable[[SetData, MatchConfig], tuple[np.ndarray, np.ndarray]]


# ----------------------------------------------------------------------
# Strategies: (SetData, config) -> (scores, raw weights) over kept controls
# ----------------------------------------------------------------------


def _refine_none(data: SetData, config: MatchConfig) -> tuple[np.ndarray, np.ndarray]:
    n = int(data.keep.sum())
    return np.ones(n), np.ones(n)


def _refine_mahalanobis(data: SetData, config: MatchConfig) -> tuple[np.ndarray, np.ndarray]:
    distances = mahalanobis_distances(
        data.treated[0],
        data.controls[0],
        diagonal=config.use_diagonal_variance_matrix,
    )
    raw = np.zeros(len(distances))
    raw[nearest(distances, config.size_match)] = 1.0
    return distances, raw


def _scores(data: SetData, block: int, model: str) -> tuple[float, np.ndarray]:
    if data.pooled_error is not None:
        raise RefinementConvergenceError(data.pooled_error)
    if data.pooled is not None:
        return data.pooled[block]
    X = np.vstack([data.treated[block][None, :], data.controls[block]])
    y = np.zeros(len(X))
    y[0] = 1.0
    fitted = fit_propensity(X, y, model=model)
    return float(fitted[0]), fitted[1:]


def _propensity_match(model: str) -> Strategy:
    def refine(data: SetData, config: MatchConfig) -> tuple[np.ndarray, np.ndarray]:
        treated_score, control_scores = _scores(data, 0, model)
        gap = np.abs(control_scores - treated_score)
        raw = np.zeros(len(control_scores))
        raw[nearest(gap, config.size_match)] = 1.0
        return control_scores, raw

    return refine


def _propensity_weight(model: str) -> Strategy:
    def refine(data: SetData, config: MatchConfig) -> tuple[np.ndarray, np.ndarray]:
        _, control_scores = _scores(data, 0, model)
        return control_scores, odds(control_scores)

    return refine


def _propensity_msm_weight(model: str) -> Strategy:
    def refine(data: SetData, config: MatchConfig) -> tuple[np.ndarray, np.ndarray]:
        n = int(data.keep.sum())
        raw = np.ones(n)
        first = None
        for block in range(len(data.controls)):
            _, control_scores = _scores(data, block, model)
            if first is None:
                first = control_scores
            raw *= odds(control_scores)
        return first, raw

    return refine


STRATEGIES: dict[str, Strategy] = {
    "none": _refine_none,
    "mahalanobis": _refine_mahalanobis,
    "ps.match": _propensity_match("ps"),
    "CBPS.match": _propensity_match("CBPS"),
    "ps.weight": _propensity_weight("ps"),
    "CBPS.weight": _propensity_weight("CBPS"),
    "ps.msm.weight": _propensity_msm_weight("ps"),
    "CBPS.msm.weight": _propensity_msm_weight("CBPS"),
}


def _model_of(method: str) -> str | None:
    if method.startswith("ps."):
        return "ps"
    if method.startswith("CBPS."):
        return "CBPS"
    return None


class RefinementEngine:
    """Refine raw matched sets by covariate similarity and weight them.

    Parameters
    ----------
    index : PanelIndex
        Indexed panel holding the covariate columns.
    config : MatchConfig
        Matching options. Uses ``refinement_method``, ``covariates``,
        ``size_match``, ``listwise_delete``, ``lead``,
        ``use_diagonal_variance_matrix``, ``propensity_pool`` and
        ``n_jobs``.

    Example
    -------
    >>> engine = RefinementEngine(index, MatchConfig(lag=4, refinement_method="mahalanobis", covariates="tradewb"))
    >>> engine.refine_all(raw_sets)
    """

    def __init__(self, index: PanelIndex, config: MatchConfig):
        self.index = index
        self.config = config
        self.normalizer = WeightNormalizer(config)
        self._strategy = STRATEGIES[config.refinement_method]
        if config.refinement_method != "none":
            validate_covariates(index, config.covariates)

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def refine_all(self, sets: Sequence[MatchedSet]) -> list[MatchedSet]:
        """Refine and normalize every set in place.

        Per-set computations are independent and run on a ``joblib``
        worker pool when ``n_jobs != 1``; results are applied to the sets
        afterwards, in order.
        """
        data = [self._set_data(ms) for ms in sets]
        model = _model_of(self.config.refinement_method)
        if model is not None and self.config.propensity_pool == "pooled":
            self._fit_pooled(data, model)

        if self.config.n_jobs == 1:
            refinements = [self._refine(ms, d) for ms, d in zip(sets, data)]
        else:
            refinements = Parallel(n_jobs=self.config.n_jobs)(
                delayed(self._refine)(ms, d) for ms, d in zip(sets, data)
            )

        for ms, ref in zip(sets, refinements):
            self.apply(ms, ref)

        n_fallback = sum(1 for ms in sets if REFINEMENT_FALLBACK in ms.flags)
        n_listwise = sum(1 for ms in sets if LISTWISE_DELETED in ms.flags)
        logger.info(
            "Refinement '%s': %s sets, %s fell back to equal weights, %s affected by listwise deletion",
            self.config.refinement_method,
            f"{len(sets):,}",
            f"{n_fallback:,}",
            f"{n_listwise:,}",
        )
        return list(sets)

    def refine(self, ms: MatchedSet) -> MatchedSet:
        """Refine and normalize a single set in place."""
        data = self._set_data(ms)
        model = _model_of(self.config.refinement_method)
        if model is not None and self.config.propensity_pool == "pooled":
            self._fit_pooled([data], model)
        return self.apply(ms, self._refine(ms, data))

    def apply(self, ms: MatchedSet, ref: Refinement) -> MatchedSet:
        """Write a refinement's scores, flags and normalized weights onto ``ms``."""
        for name in ref.flags:
            ms.flag(name)
        if ref.error is not None:
            logger.warning(
                "Event %s: refinement failed (%s); using equal weights", ms.event, ref.error
            )
        ms.scores = dict(ref.scores)
        return self.normalizer.normalize(ms, ref.raw_weights, excluded=ref.excluded)

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _periods(self, period: int) -> list[tuple[int, int]]:
        """(lead offset, measurement period) of each covariate block."""
        if self.config.refinement_method.endswith("msm.weight"):
            # Leads past the last panel period have no records to model
            blocks = [
                (f, period + f) for f in self.config.lead
                if period + f < self.index.n_periods
            ]
            if blocks:
                return blocks
        return [(0, period)]

    def _set_data(self, ms: MatchedSet) -> SetData | None:
        if not ms.controls or self.config.refinement_method == "none":
            return None

        idx = self.index
        cfg = self.config
        u = np.array([idx.unit_pos(ms.unit)])
        rows = np.array([idx.unit_pos(c) for c in ms.controls])

        treated_blocks = []
        control_blocks = []
        blocks = self._periods(ms.event.period)
        offsets = [f for f, _ in blocks]
        for _, period in blocks:
            treated_blocks.append(covariate_matrix(idx, cfg.covariates, u, period)[0])
            control_blocks.append(covariate_matrix(idx, cfg.covariates, rows, period))

        if cfg.listwise_delete:
            keep = np.ones(len(rows), dtype=bool)
            treated_missing = False
            for t_block, c_block in zip(treated_blocks, control_blocks):
                prepared = apply_missing_policy(t_block, c_block, True)
                keep &= prepared.keep
                treated_missing |= prepared.treated_missing
            return SetData(
                treated=treated_blocks,
                controls=[c[keep] for c in control_blocks],
                keep=keep,
                treated_missing=treated_missing,
                offsets=offsets,
            )

        prepared = [apply_missing_policy(t, c, False) for t, c in zip(treated_blocks, control_blocks)]
        return SetData(
            treated=[p.treated for p in prepared],
            controls=[p.controls for p in prepared],
            keep=np.ones(len(rows), dtype=bool),
            offsets=offsets,
        )

    def _refine(self, ms: MatchedSet, data: SetData | None) -> Refinement:
        controls = ms.controls
        if not controls:
            return Refinement()
        if data is None:
            return Refinement(
                scores={c: 1.0 for c in controls},
                raw_weights={c: 1.0 for c in controls},
            )

        kept = [c for c, k in zip(controls, data.keep) if k]
        excluded = tuple(c for c, k in zip(controls, data.keep) if not k)
        flags: set[str] = set()
        if excluded:
            flags.add(LISTWISE_DELETED)

        if data.treated_missing:
            # Event unit itself is listwise-deleted: no usable comparison
            flags.add(LISTWISE_DELETED)
            return Refinement(excluded=tuple(controls), flags=flags)
        if not kept:
            return Refinement(excluded=excluded, flags=flags)

        try:
            scores, raw = self._strategy(data, self.config)
        except RefinementConvergenceError as exc:
            flags.add(REFINEMENT_FALLBACK)
            return Refinement(
                scores={c: np.nan for c in kept},
                raw_weights={c: 1.0 for c in kept},
                excluded=excluded,
                flags=flags,
                error=str(exc),
            )

        return Refinement(
            scores=dict(zip(kept, np.asarray(scores, dtype=float).tolist())),
            raw_weights=dict(zip(kept, np.asarray(raw, dtype=float).tolist())),
            excluded=excluded,
            flags=flags,
        )

    def _fit_pooled(self, data: Sequence[SetData | None], model: str) -> None:
        """Fit one propensity model per lead offset across all sets measured there."""
        usable = [
            d for d in data
            if d is not None and not d.treated_missing and d.keep.any()
        ]
        if not usable:
            return

        pooled_scores: list[dict[int, tuple[float, np.ndarray]]] = [{} for _ in usable]
        for offset in sorted({f for d in usable for f in d.offsets}):
            members = [
                (i, d, d.offsets.index(offset))
                for i, d in enumerate(usable)
                if offset in d.offsets
            ]
            X = np.vstack(
                [np.vstack([d.treated[b][None, :], d.controls[b]]) for _, d, b in members]
            )
            y = np.concatenate(
                [np.r_[1.0, np.zeros(len(d.controls[b]))] for _, d, b in members]
            )
            try:
                fitted = fit_propensity(X, y, model=model)
            except RefinementConvergenceError as exc:
                logger.warning(
                    "Pooled %s fit at lead %s failed (%s); %s sets fall back to equal weights",
                    model,
                    offset,
                    exc,
                    f"{len(members):,}",
                )
                for _, d, _ in members:
                    d.pooled_error = f"pooled {model} fit failed: {exc}"
                continue

            start = 0
            for i, d, b in members:
                size = 1 + len(d.controls[b])
                chunk = fitted[start:start + size]
                pooled_scores[i][b] = (float(chunk[0]), chunk[1:])
                start += size

        for d, scores in zip(usable, pooled_scores):
            if d.pooled_error is None:
                d.pooled = [scores[b] for b in range(len(d.offsets))]

        logger.info(
            "Pooled %s model fitted on %s matched sets", model, f"{len(usable):,}"
        )
