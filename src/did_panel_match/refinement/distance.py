"""Mahalanobis distances between an event unit and its controls."""

from __future__ import annotations

import numpy as np


def covariance_matrix(controls: np.ndarray, diagonal: bool = False) -> np.ndarray:
    """Sample covariance of the control covariates.

    With fewer than two controls the covariance is undefined and the
    identity matrix is returned, which reduces the distance to the
    Euclidean one.

    Parameters
    ----------
    controls : np.ndarray
        Shape ``(n, k)`` covariate matrix.
    diagonal : bool
        Keep only the variances (off-diagonal entries set to zero).
    """
    controls = np.atleast_2d(np.asarray(controls, dtype=float))
    n, k = controls.shape
    if n < 2:
        return np.eye(k)
    cov = np.atleast_2d(np.cov(controls, rowvar=False, ddof=1))
    if diagonal:
        cov = np.diag(np.diag(cov))
    return cov


def mahalanobis_distances(
    treated: np.ndarray,
    controls: np.ndarray,
    covariance: np.ndarray | None = None,
    diagonal: bool = False,
) -> np.ndarray:
    """Distance from the treated vector to each control row.

    Singular covariance matrices are handled with the Moore-Penrose
    pseudo-inverse, so constant covariates simply drop out.

    Parameters
    ----------
    treated : np.ndarray
        Shape ``(k,)``.
    controls : np.ndarray
        Shape ``(n, k)``.
    covariance : np.ndarray, optional
        Covariance to use. Computed from ``controls`` if None.
    diagonal : bool
        Only used when ``covariance`` is None.

    Returns
    -------
    np.ndarray
        Shape ``(n,)`` non-negative distances.
    """
    treated = np.asarray(treated, dtype=float).ravel()
    controls = np.atleast_2d(np.asarray(controls, dtype=float))
    if controls.shape[0] == 0:
        return np.empty(0)
    if controls.shape[1] == 0:
        return np.zeros(controls.shape[0])

    if covariance is None:
        covariance = covariance_matrix(controls, diagonal=diagonal)
    inv = np.linalg.pinv(np.atleast_2d(covariance), hermitian=True)

    diff = controls - treated
    d2 = np.einsum("ij,jk,ik->i", diff, inv, diff)
    return np.sqrt(np.clip(d2, 0.0, None))


def nearest(scores: np.ndarray, k: int) -> np.ndarray:
    """Positions of the ``k`` smallest scores; ties keep input order."""
    order = np.argsort(scores, kind="stable")
    return order[:k]
