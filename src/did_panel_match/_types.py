"""Shared types and configuration for did-panel-match."""

from __future__ import annotations

import numbers
from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Sequence, Union

from ._errors import ConfigurationError
from ._formula import CovariateSpec, CovariateTerm, normalize_covariates

QOIS = ("att", "atc", "art")

REFINEMENT_METHODS = (
    "none",
    "mahalanobis",
    "ps.match",
    "CBPS.match",
    "ps.weight",
    "CBPS.weight",
    "ps.msm.weight",
    "CBPS.msm.weight",
)

# Dotted option names accepted by ``from_dict``
_ALIASES = {
    "refinement.method": "refinement_method",
    "covs.formula": "covariates",
    "size.match": "size_match",
    "match.missing": "match_missing",
    "listwise.delete": "listwise_delete",
    "forbid.treatment.reversal": "forbid_treatment_reversal",
    "use.diagonal.variance.matrix": "use_diagonal_variance_matrix",
    "use.equal.weights": "use_equal_weights",
    "propensity.pool": "propensity_pool",
    "unit.id": "unit_col",
    "time.id": "time_col",
    "outcome.var": "outcome_col",
    "treatment": "treatment_col",
    "number.iterations": "iterations",
    "confidence.level": "confidence_level",
    "se.method": "ci_method",
}


def _from_mapping(cls, options: Mapping[str, Any]):
    known = {f.name for f in fields(cls)}
    kwargs: dict[str, Any] = {}
    for key, value in options.items():
        name = _ALIASES.get(key, key.replace(".", "_"))
        if name not in known:
            raise ConfigurationError(
                f"Unknown option '{key}' for {cls.__name__}. "
                f"Available: {sorted(known)}"
            )
        kwargs[name] = value
    return cls(**kwargs)


def _is_integer(value: Any) -> bool:
    """True for Python and numpy integers; bools are rejected."""
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def _coerce_integers(obj: Any, names: Sequence[str]) -> None:
    for name in names:
        value = getattr(obj, name)
        if _is_integer(value):
            object.__setattr__(obj, name, int(value))


@dataclass(frozen=True)
class PanelConfig:
    """Column name mapping for panel data.

    Parameters
    ----------
    unit_col : str
        Column name for the unit identifier (e.g., country, firm).
    time_col : str
        Column name for the time period. Must be numeric.
    treatment_col : str
        Column name for the binary treatment indicator (0/1/NA).
    outcome_col : str
        Column name for the outcome variable.

    Example
    -------
    >>> config = PanelConfig(unit_col="wbcode2", time_col="year", treatment_col="dem", outcome_col="y")
    """

    unit_col: str = "unit_id"
    time_col: str = "time"
    treatment_col: str = "treatment"
    outcome_col: str = "outcome"

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> "PanelConfig":
        return _from_mapping(cls, options)


@dataclass(frozen=True)
class MatchConfig:
    """Options for matched-set construction and refinement.

    Parameters
    ----------
    lag : int
        Number of pre-event periods whose treatment history must match.
    lead : int or sequence of int
        Lead window. An int ``K`` means offsets ``0..K``.
    qoi : str
        Quantity of interest: ``"att"``, ``"atc"`` or ``"art"``.
    refinement_method : str
        One of :data:`REFINEMENT_METHODS`.
    covariates : str or sequence
        Covariate formula (``"x1 + lag(x2, 1:3)"``) or terms.
    size_match : int
        Maximum number of controls kept by matching-style refinement.
    match_missing : bool
        Treat NA treatment values in the history window as wildcards.
    listwise_delete : bool
        Drop units with NA covariates from refinement (weight 0).
    forbid_treatment_reversal : bool
        Require controls (and the event unit) to keep their status through
        the lead window.
    use_diagonal_variance_matrix : bool
        Use only the variances for the Mahalanobis distance.
    use_equal_weights : bool
        Recompute weights as equal over the retained controls.
    propensity_pool : str
        ``"event"`` fits one propensity model per matched set, ``"pooled"``
        fits one model over all sets.
    n_jobs : int
        Worker count for per-event refinement (``joblib`` semantics).
    """

    lag: int = 1
    lead: Union[int, Sequence[int]] = (0,)
    qoi: str = "att"
    refinement_method: str = "none"
    covariates: CovariateSpec = ()
    size_match: int = 10
    match_missing: bool = True
    listwise_delete: bool = False
    forbid_treatment_reversal: bool = False
    use_diagonal_variance_matrix: bool = False
    use_equal_weights: bool = False
    propensity_pool: str = "event"
    n_jobs: int = 1

    def __post_init__(self) -> None:
        _coerce_integers(self, ("lag", "size_match", "n_jobs"))
        if _is_integer(self.lead):
            lead = int(self.lead)
            lead = tuple(range(lead + 1)) if lead >= 0 else (lead,)
        else:
            lead = tuple(sorted({int(f) for f in self.lead}))
        object.__setattr__(self, "lead", lead)
        object.__setattr__(self, "covariates", normalize_covariates(self.covariates))
        self._validate()

    def _validate(self) -> None:
        if not _is_integer(self.lag) or self.lag < 1:
            raise ConfigurationError(f"lag must be an integer >= 1, got {self.lag!r}")
        if not self.lead:
            raise ConfigurationError("lead window must contain at least one offset")
        if any(f < 0 for f in self.lead):
            raise ConfigurationError(f"lead offsets must be >= 0, got {self.lead}")
        if self.qoi not in QOIS:
            raise ConfigurationError(f"qoi must be one of {QOIS}, got '{self.qoi}'")
        if self.refinement_method not in REFINEMENT_METHODS:
            raise ConfigurationError(
                f"refinement_method must be one of {REFINEMENT_METHODS}, "
                f"got '{self.refinement_method}'"
            )
        if not _is_integer(self.size_match) or self.size_match < 1:
            raise ConfigurationError(
                f"size_match must be an integer >= 1, got {self.size_match!r}"
            )
        if self.refinement_method != "none" and not self.covariates:
            raise ConfigurationError(
                f"refinement_method '{self.refinement_method}' needs a non-empty "
                "covariate formula"
            )
        if self.propensity_pool not in ("event", "pooled"):
            raise ConfigurationError(
                f"propensity_pool must be 'event' or 'pooled', got '{self.propensity_pool}'"
            )

    @property
    def max_lead(self) -> int:
        return max(self.lead)

    @property
    def reference_status(self) -> int:
        """Treatment status held before the event (0 for att, 1 for atc/art)."""
        return 0 if self.qoi == "att" else 1

    @property
    def covariate_labels(self) -> list[str]:
        return [label for term in self.covariates for label in term.labels]

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> "MatchConfig":
        """Build from a mapping; dotted names like ``"size.match"`` are accepted."""
        return _from_mapping(cls, options)


@dataclass(frozen=True)
class BootstrapConfig:
    """Options for the bootstrap effect estimator.

    Parameters
    ----------
    iterations : int
        Number of bootstrap resamples (default 1000).
    confidence_level : float
        Confidence level for intervals, strictly between 0 and 1.
    seed : int, optional
        Random seed. Without one, results vary run to run.
    ci_method : str
        ``"percentile"`` (empirical quantiles) or ``"normal"``
        (point estimate +/- z * SE).
    resample_by : str
        ``"event"`` resamples treated events, ``"unit"`` resamples treated
        units and takes all of their events.
    difference_outcomes : bool
        Measure outcomes relative to the period before the event.
    n_jobs : int
        Worker count for bootstrap iteration chunks.
    """

    iterations: int = 1000
    confidence_level: float = 0.95
    seed: int | None = None
    ci_method: str = "percentile"
    resample_by: str = "event"
    difference_outcomes: bool = False
    n_jobs: int = 1
    chunk_size: int = field(default=100, repr=False)

    def __post_init__(self) -> None:
        _coerce_integers(self, ("iterations", "n_jobs", "chunk_size"))
        if not _is_integer(self.iterations) or self.iterations < 1:
            raise ConfigurationError(
                f"iterations must be an integer >= 1, got {self.iterations!r}"
            )
        if not 0 < self.confidence_level < 1:
            raise ConfigurationError(
                f"confidence_level must be in (0, 1), got {self.confidence_level}"
            )
        if self.ci_method not in ("percentile", "normal"):
            raise ConfigurationError(
                f"ci_method must be 'percentile' or 'normal', got '{self.ci_method}'"
            )
        if self.resample_by not in ("event", "unit"):
            raise ConfigurationError(
                f"resample_by must be 'event' or 'unit', got '{self.resample_by}'"
            )
        if self.chunk_size < 1:
            raise ConfigurationError("chunk_size must be >= 1")

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> "BootstrapConfig":
        return _from_mapping(cls, options)


__all__ = [
    "BootstrapConfig",
    "CovariateTerm",
    "MatchConfig",
    "PanelConfig",
    "QOIS",
    "REFINEMENT_METHODS",
]
