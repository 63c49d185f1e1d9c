"""Covariate extraction and missing-data handling for refinement."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .._errors import ConfigurationError
from .._formula import CovariateTerm
from ..panels.index import PanelIndex


def validate_covariates(index: PanelIndex, terms: Sequence[CovariateTerm]) -> None:
    """Raise ``ConfigurationError`` if a term names a column the index lacks."""
    unknown = [t.name for t in terms if not index.has_column(t.name)]
    if unknown:
        raise ConfigurationError(
            f"Covariates not found in panel: {unknown}. Available: {index.columns}"
        )


def covariate_matrix(
    index: PanelIndex,
    terms: Sequence[CovariateTerm],
    rows: np.ndarray,
    period: int,
) -> np.ndarray:
    """Covariate values for ``rows`` measured relative to ``period``.

    Each term contributes one column per lag offset ``k``, holding the
    value at ``period - k``. Offsets that fall outside the panel are NaN.

    Returns
    -------
    np.ndarray
        Shape ``(len(rows), n_labels)``.
    """
    rows = np.asarray(rows, dtype=np.intp)
    columns = []
    for term in terms:
        values = index.values(term.name)
        for k in term.lags:
            col = period - k
            if 0 <= col < index.n_periods:
                columns.append(values[rows, col])
            else:
                columns.append(np.full(len(rows), np.nan))
    if not columns:
        return np.empty((len(rows), 0))
    return np.column_stack(columns)


@dataclass
class PreparedCovariates:
    """Treated and control covariates after the missing-data policy."""

    treated: np.ndarray
    controls: np.ndarray
    keep: np.ndarray
    treated_missing: bool

    @property
    def n_kept(self) -> int:
        return int(self.keep.sum())


def apply_missing_policy(
    treated: np.ndarray,
    controls: np.ndarray,
    listwise_delete: bool,
) -> PreparedCovariates:
    """Apply the missing-data policy to one matched set's covariates.

    With ``listwise_delete`` every control with any NA is dropped
    (``keep`` False) and an NA in the treated row marks the whole set via
    ``treated_missing``. Without it, NAs are imputed with the column mean
    over the treated row and the controls; columns with no observed value
    are set to a constant 0, which both distances and propensity models
    ignore.

    Parameters
    ----------
    treated : np.ndarray
        Shape ``(k,)`` covariate vector of the event unit.
    controls : np.ndarray
        Shape ``(n, k)`` covariate matrix of the eligible controls.
    listwise_delete : bool
        Policy switch.
    """
    treated = np.asarray(treated, dtype=float)
    controls = np.asarray(controls, dtype=float)

    if listwise_delete:
        keep = ~np.isnan(controls).any(axis=1)
        treated_missing = bool(np.isnan(treated).any())
        return PreparedCovariates(treated, controls[keep], keep, treated_missing)

    stacked = np.vstack([treated[None, :], controls])
    unobserved = np.isnan(stacked).all(axis=0)
    # Columns with no observed value carry no information: make them constant
    stacked[:, unobserved] = 0.0
    if stacked.size:
        means = np.nanmean(stacked, axis=0)
        nan_r, nan_c = np.nonzero(np.isnan(stacked))
        stacked[nan_r, nan_c] = means[nan_c]
    keep = np.ones(len(controls), dtype=bool)
    return PreparedCovariates(stacked[0], stacked[1:], keep, False)
