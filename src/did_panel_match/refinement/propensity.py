"""Propensity score models: logistic regression and CBPS.

Both fitters take a covariate matrix and a 0/1 membership vector (1 for
the event unit, 0 for its eligible controls) and return fitted
probabilities. A fit that does not converge, including perfect
separation, raises :class:`RefinementConvergenceError` so the caller can
fall back to equal weights for that matched set.

The CBPS variant is the just-identified covariate balancing propensity
score for the ATT (Imai & Ratkovic, 2014): the coefficients are chosen so
that the odds-weighted control means of every covariate equal the treated
means exactly.

Reference:
    Imai, K., & Ratkovic, M. (2014). Covariate balancing propensity score.
    Journal of the Royal Statistical Society, Series B.
"""

from __future__ import annotations

import logging
import warnings

import numpy as np
import statsmodels.api as sm
from scipy.optimize import minimize
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning,
    HessianInversionWarning,
    PerfectSeparationError,
    PerfectSeparationWarning,
)

from .._errors import RefinementConvergenceError

logger = logging.getLogger(__name__)

MODELS = ("ps", "CBPS")

# Largest absolute balance moment (standardized covariates) accepted for CBPS
CBPS_TOLERANCE = 1e-5


def design_matrix(X: np.ndarray) -> np.ndarray:
    """Standardize columns, drop constant ones, and prepend an intercept."""
    X = np.atleast_2d(np.asarray(X, dtype=float))
    if X.shape[1]:
        sd = X.std(axis=0)
        varying = sd > 1e-12
        X = (X[:, varying] - X[:, varying].mean(axis=0)) / sd[varying]
    if X.shape[1] == 0:
        return np.ones((X.shape[0], 1))
    return sm.add_constant(X, has_constant="add")


def _check_sample(design: np.ndarray, y: np.ndarray) -> None:
    n_pos = int(y.sum())
    if n_pos == 0 or n_pos == len(y):
        raise RefinementConvergenceError(
            "Propensity model needs both treated and control rows"
        )
    if len(y) <= design.shape[1]:
        raise RefinementConvergenceError(
            f"Propensity model has {len(y)} rows for {design.shape[1]} parameters"
        )


def fit_logit(X: np.ndarray, y: np.ndarray, maxiter: int = 100) -> tuple[np.ndarray, np.ndarray]:
    """Fit a logistic propensity model with ``statsmodels.Logit``.

    Returns
    -------
    tuple[np.ndarray, np.ndarray]
        Fitted probabilities and coefficients (on the standardized design).
    """
    y = np.asarray(y, dtype=float)
    design = design_matrix(X)
    _check_sample(design, y)

    with warnings.catch_warnings():
        warnings.simplefilter("error", PerfectSeparationWarning)
        warnings.simplefilter("error", ConvergenceWarning)
        warnings.simplefilter("error", HessianInversionWarning)
        try:
            result = sm.Logit(y, design).fit(disp=0, maxiter=maxiter)
        except (
            PerfectSeparationError,
            PerfectSeparationWarning,
            ConvergenceWarning,
            HessianInversionWarning,
            np.linalg.LinAlgError,
        ) as exc:
            raise RefinementConvergenceError(f"Logit fit failed: {exc}") from exc

    if not result.mle_retvals.get("converged", False):
        raise RefinementConvergenceError("Logit fit did not converge")

    params = np.asarray(result.params, dtype=float)
    return np.asarray(result.predict(design), dtype=float), params


def fit_cbps(X: np.ndarray, y: np.ndarray, maxiter: int = 500) -> tuple[np.ndarray, np.ndarray]:
    """Fit a just-identified ATT covariate balancing propensity score.

    The balance conditions ``sum_T x_i = sum_C exp(x_i b) x_i`` are the
    first-order conditions of the convex objective
    ``sum_C exp(x_i b) - sum_T x_i b``, which is minimized with BFGS from
    the logistic estimate (or from zero when the logit fit fails).

    Returns
    -------
    tuple[np.ndarray, np.ndarray]
        Fitted probabilities and coefficients (on the standardized design).
    """
    y = np.asarray(y, dtype=float)
    design = design_matrix(X)
    _check_sample(design, y)

    treated = design[y == 1]
    controls = design[y == 0]
    target = treated.sum(axis=0)
    scale = len(treated)

    def objective(beta: np.ndarray) -> tuple[float, np.ndarray]:
        odds = np.exp(np.clip(controls @ beta, -50.0, 50.0))
        value = (odds.sum() - target @ beta) / scale
        grad = (controls.T @ odds - target) / scale
        return float(value), grad

    try:
        _, beta0 = fit_logit(X, y)
    except RefinementConvergenceError:
        beta0 = np.zeros(design.shape[1])

    # Line searches can step to huge coefficients; the final check rejects them
    with np.errstate(over="ignore", invalid="ignore"):
        result = minimize(
            objective,
            beta0,
            jac=True,
            method="BFGS",
            options={"maxiter": maxiter, "gtol": CBPS_TOLERANCE / 10},
        )
        _, grad = objective(result.x)
    imbalance = float(np.max(np.abs(grad)))
    if not np.all(np.isfinite(result.x)) or not imbalance <= CBPS_TOLERANCE:
        raise RefinementConvergenceError(
            f"CBPS did not balance covariates (max moment {imbalance:.2e}: {result.message})"
        )

    scores = 1.0 / (1.0 + np.exp(-np.clip(design @ result.x, -50.0, 50.0)))
    return scores, result.x


def fit_propensity(X: np.ndarray, y: np.ndarray, model: str = "ps") -> np.ndarray:
    """Fitted membership probabilities for ``model`` in :data:`MODELS`."""
    if model == "ps":
        return fit_logit(X, y)[0]
    if model == "CBPS":
        return fit_cbps(X, y)[0]
    raise ValueError(f"Unknown propensity model '{model}'. Use one of {MODELS}")


def odds(scores: np.ndarray, eps: float = 1e-10) -> np.ndarray:
    """``p / (1 - p)`` with scores clipped away from 0 and 1."""
    p = np.clip(np.asarray(scores, dtype=float), eps, 1.0 - eps)
    return p / (1.0 - p)
