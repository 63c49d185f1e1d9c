"""Bootstrap estimation of lead-specific treatment effects from matched sets.

For each lead offset ``l`` the effect of one treated event is

    Y(u, t+l) - sum_c w_c * Y(c, t+l)

using the weights of the event's matched set (optionally with every
outcome measured relative to ``t-1``). The point estimate is the average
over events. Standard errors and confidence intervals come from
resampling events (or treated units) with replacement while keeping each
event's matched set and weights fixed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy.stats import norm

from .._errors import InsufficientDataError
from .._types import BootstrapConfig
from ..matching.sets import MatchedSet, MatchingResult
from ..panels.index import PanelIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeadEstimate:
    """Point estimate, standard error and interval for one lead offset.

    Undefined leads carry NaN values and the ``error`` explaining why.
    """

    lead: int
    estimate: float
    std_error: float
    ci_lower: float
    ci_upper: float
    n_events: int
    error: InsufficientDataError | None = None

    @property
    def is_defined(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class Estimate:
    """Per-lead effect estimates for one quantity of interest."""

    qoi: str
    leads: Mapping[int, LeadEstimate]
    config: BootstrapConfig
    iterations_completed: int
    bootstrap: np.ndarray = field(repr=False)

    def __getitem__(self, lead: int) -> LeadEstimate:
        return self.leads[lead]

    @property
    def undefined_leads(self) -> list[int]:
        return [lead for lead, est in self.leads.items() if not est.is_defined]

    @property
    def errors(self) -> dict[int, InsufficientDataError]:
        return {lead: est.error for lead, est in self.leads.items() if est.error is not None}

    def require(self, lead: int) -> LeadEstimate:
        """Return a lead's estimate, raising its ``InsufficientDataError`` if undefined."""
        est = self.leads[lead]
        if est.error is not None:
            raise est.error
        return est

    def to_frame(self) -> pd.DataFrame:
        """One row per lead with estimate, std_error, CI bounds and status."""
        rows = []
        for lead, est in self.leads.items():
            rows.append({
                "lead": lead,
                "estimate": est.estimate,
                "std_error": est.std_error,
                "ci_lower": est.ci_lower,
                "ci_upper": est.ci_upper,
                "n_events": est.n_events,
                "defined": est.is_defined,
            })
        return pd.DataFrame(rows).set_index("lead")


class BootstrapEstimator:
    """Estimate lead effects and their bootstrap uncertainty.

    Parameters
    ----------
    result : MatchingResult
        Matched sets with weights.
    data : PanelIndex or pd.DataFrame
        Panel holding the outcome. A DataFrame is indexed with the
        result's ``panel_config``.
    config : BootstrapConfig, optional
        Bootstrap options. Uses defaults if not provided.
    outcome : str, optional
        Outcome column. Defaults to ``panel_config.outcome_col``.

    Example
    -------
    >>> estimator = BootstrapEstimator(result, df, BootstrapConfig(iterations=500, seed=1))
    >>> estimate = estimator.estimate()
    >>> estimate.to_frame()
    """

    def __init__(
        self,
        result: MatchingResult,
        data: PanelIndex | pd.DataFrame,
        config: BootstrapConfig | None = None,
        outcome: str | None = None,
    ):
        self.result = result
        self.config = config or BootstrapConfig()
        if isinstance(data, PanelIndex):
            self.index = data
        else:
            self.index = PanelIndex(data, config=result.panel_config)
        self.outcome = outcome or result.panel_config.outcome_col
        self._y = self.index.values(self.outcome)
        self.leads = list(result.match_config.lead)

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    def event_effects(self, qoi: str | None = None) -> pd.DataFrame:
        """Per-event effect for every lead (NaN where unusable).

        Returns
        -------
        pd.DataFrame
            One row per matched set, indexed by (unit, time), one column
            per lead offset.
        """
        qoi = qoi or self.result.match_config.qoi
        sets = self.result[qoi]
        effects = self._effect_matrix(sets, qoi)
        c = self.result.panel_config
        index = pd.MultiIndex.from_tuples(
            [(ms.unit, ms.time) for ms in sets], names=[c.unit_col, c.time_col]
        )
        return pd.DataFrame(effects, index=index, columns=self.leads)

    def _effect_matrix(self, sets: tuple[MatchedSet, ...], qoi: str) -> np.ndarray:
        effects = np.full((len(sets), len(self.leads)), np.nan)
        for i, ms in enumerate(sets):
            if ms.is_empty:
                continue
            effects[i] = self._set_effects(ms)
        if qoi == "atc":
            effects = -effects
        return effects

    def _set_effects(self, ms: MatchedSet) -> np.ndarray:
        idx = self.index
        y = self._y
        p = ms.event.period
        u = idx.unit_pos(ms.unit)
        weighted = ms.weighted_controls
        rows = np.array([idx.unit_pos(c) for c in weighted])
        w = np.array(list(weighted.values()), dtype=float)

        if self.config.difference_outcomes:
            base_u = y[u, p - 1]
            base_c = y[rows, p - 1]
        else:
            base_u = 0.0
            base_c = np.zeros(len(rows))

        out = np.full(len(self.leads), np.nan)
        for j, lead in enumerate(self.leads):
            col = p + lead
            if col >= idx.n_periods:
                continue
            y_u = y[u, col] - base_u
            y_c = y[rows, col] - base_c
            valid = ~np.isnan(y_c)
            if np.isnan(y_u) or not valid.any():
                continue
            # Controls missing the outcome drop out; the rest are renormalized
            w_valid = w[valid] / w[valid].sum()
            out[j] = y_u - float(w_valid @ y_c[valid])
        return out

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def estimate(
        self,
        qoi: str | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> Estimate:
        """Compute point estimates, standard errors and confidence intervals.

        Parameters
        ----------
        qoi : str, optional
            Quantity of interest. Defaults to the matched qoi.
        should_stop : callable, optional
            Checked before every iteration; when it returns True the
            remaining iterations are skipped and the estimate uses the
            completed ones.

        Returns
        -------
        Estimate
            Per-lead results. Leads without usable events are marked
            undefined instead of raising.
        """
        cfg = self.config
        qoi = qoi or self.result.match_config.qoi
        sets = self.result[qoi]
        effects = self._effect_matrix(sets, qoi)
        baseline, counts = _column_means(effects)

        groups = self._resample_groups(sets)
        boot = self._bootstrap(effects, groups, should_stop)
        completed = boot.shape[0]
        if completed < cfg.iterations:
            logger.warning(
                "Bootstrap stopped early: %s of %s iterations completed",
                f"{completed:,}",
                f"{cfg.iterations:,}",
            )

        alpha = 1.0 - cfg.confidence_level
        leads: dict[int, LeadEstimate] = {}
        for j, lead in enumerate(self.leads):
            if counts[j] == 0:
                error = InsufficientDataError(
                    f"No treated events with usable matched sets at lead {lead} ({qoi})",
                    lead=lead,
                )
                logger.warning("%s", error)
                leads[lead] = LeadEstimate(lead, np.nan, np.nan, np.nan, np.nan, 0, error)
                continue

            draws = boot[:, j]
            draws = draws[np.isfinite(draws)]
            se = float(np.std(draws, ddof=1)) if len(draws) > 1 else np.nan
            if cfg.ci_method == "normal":
                z = float(norm.ppf(1.0 - alpha / 2.0))
                lower, upper = baseline[j] - z * se, baseline[j] + z * se
            elif len(draws):
                lower, upper = np.quantile(draws, [alpha / 2.0, 1.0 - alpha / 2.0])
            else:
                lower = upper = np.nan
            leads[lead] = LeadEstimate(
                lead=lead,
                estimate=float(baseline[j]),
                std_error=se,
                ci_lower=float(lower),
                ci_upper=float(upper),
                n_events=int(counts[j]),
            )

        n_defined = sum(1 for est in leads.values() if est.is_defined)
        logger.info(
            "Estimated %s: %s of %s leads defined, %s bootstrap iterations",
            qoi,
            n_defined,
            len(leads),
            f"{completed:,}",
        )
        return Estimate(
            qoi=qoi,
            leads=leads,
            config=cfg,
            iterations_completed=completed,
            bootstrap=boot,
        )

    def _resample_groups(self, sets: tuple[MatchedSet, ...]) -> list[np.ndarray]:
        """Rows drawn together: one per event, or all events of one unit."""
        if self.config.resample_by == "event":
            return [np.array([i]) for i in range(len(sets))]
        by_unit: dict[Any, list[int]] = {}
        for i, ms in enumerate(sets):
            by_unit.setdefault(ms.unit, []).append(i)
        return [np.array(rows) for rows in by_unit.values()]

    def _bootstrap(
        self,
        effects: np.ndarray,
        groups: list[np.ndarray],
        should_stop: Callable[[], bool] | None,
    ) -> np.ndarray:
        cfg = self.config
        children = np.random.SeedSequence(cfg.seed).spawn(cfg.iterations)
        chunks = [
            children[start:start + cfg.chunk_size]
            for start in range(0, cfg.iterations, cfg.chunk_size)
        ]

        if cfg.n_jobs == 1:
            parts = []
            for seeds in chunks:
                parts.append(_run_chunk(effects, groups, seeds, should_stop))
                if len(parts[-1]) < len(seeds):
                    break
        else:
            parts = Parallel(n_jobs=cfg.n_jobs, prefer="threads")(
                delayed(_run_chunk)(effects, groups, seeds, should_stop) for seeds in chunks
            )
            # Later chunks may still have run; keep draws up to the first stop
            for end, (part, seeds) in enumerate(zip(parts, chunks), start=1):
                if len(part) < len(seeds):
                    parts = parts[:end]
                    break

        parts = [part for part in parts if len(part)]
        if not parts:
            return np.empty((0, effects.shape[1]))
        return np.vstack(parts)


def _column_means(effects: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Mean of the finite entries of each column, and their count."""
    finite = np.isfinite(effects)
    counts = finite.sum(axis=0)
    sums = np.where(finite, effects, 0.0).sum(axis=0)
    with np.errstate(invalid="ignore", divide="ignore"):
        means = np.where(counts > 0, sums / np.maximum(counts, 1), np.nan)
    return means, counts


def _run_chunk(
    effects: np.ndarray,
    groups: list[np.ndarray],
    seeds: list[np.random.SeedSequence],
    should_stop: Callable[[], bool] | None,
) -> np.ndarray:
    """Run one chunk of bootstrap iterations into a private accumulator."""
    out = []
    n_groups = len(groups)
    for seed in seeds:
        if should_stop is not None and should_stop():
            break
        if n_groups == 0:
            out.append(np.full(effects.shape[1], np.nan))
            continue
        rng = np.random.default_rng(seed)
        drawn = rng.integers(0, n_groups, size=n_groups)
        rows = np.concatenate([groups[g] for g in drawn])
        means, _ = _column_means(effects[rows])
        out.append(means)
    return np.array(out).reshape(len(out), effects.shape[1])


def panel_estimate(
    result: MatchingResult,
    data: PanelIndex | pd.DataFrame,
    qoi: str | None = None,
    **options: Any,
) -> Estimate:
    """Functional shortcut for :class:`BootstrapEstimator`.

    ``options`` are passed to :meth:`BootstrapConfig.from_dict`.
    """
    outcome = options.pop("outcome", None)
    config = BootstrapConfig.from_dict(options)
    return BootstrapEstimator(result, data, config, outcome=outcome).estimate(qoi)
