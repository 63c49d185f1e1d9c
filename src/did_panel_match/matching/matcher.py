"""End-to-end matched-set construction: panel -> events -> sets -> weights."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Sequence

import pandas as pd

from .._errors import ConfigurationError
from .._types import QOIS, MatchConfig, PanelConfig
from ..panels.index import PanelIndex
from ..refinement.covariates import validate_covariates
from ..refinement.engine import RefinementEngine
from ..treatment.events import TreatmentEventDetector
from .history import HistoryMatcher
from .sets import MatchedSet, MatchingResult

logger = logging.getLogger(__name__)


class PanelMatcher:
    """Build weighted matched sets for one or more quantities of interest.

    Runs the full pipeline: treatment event detection, history matching,
    covariate refinement and weight normalization. Configuration errors
    are raised before any matching work starts.

    Parameters
    ----------
    data : pd.DataFrame or PanelIndex
        Raw panel, or an already built index.
    config : PanelConfig, optional
        Column name mapping (ignored when ``data`` is a PanelIndex).
    match_config : MatchConfig, optional
        Matching options. Uses defaults if not provided.

    Example
    -------
    >>> config = PanelConfig(unit_col="wbcode2", time_col="year", treatment_col="dem", outcome_col="y")
    >>> matcher = PanelMatcher(df, config, MatchConfig(lag=4, lead=(0, 1, 2, 3)))
    >>> result = matcher.match()
    >>> result.summary()
    """

    def __init__(
        self,
        data: pd.DataFrame | PanelIndex,
        config: PanelConfig | None = None,
        match_config: MatchConfig | None = None,
    ):
        self.match_config = match_config or MatchConfig()
        if isinstance(data, PanelIndex):
            self.index = data
        else:
            self.index = PanelIndex(data, config=config)
        self.config = self.index.config
        self._result: MatchingResult | None = None

    def match(self, qois: Sequence[str] | None = None) -> MatchingResult:
        """Construct matched sets.

        Parameters
        ----------
        qois : sequence of str, optional
            Quantities of interest to build. Defaults to the configured qoi.

        Returns
        -------
        MatchingResult
            Frozen matched sets keyed by qoi.
        """
        qois = list(qois) if qois is not None else [self.match_config.qoi]
        unknown = [q for q in qois if q not in QOIS]
        if unknown:
            raise ConfigurationError(f"Unknown qoi {unknown}. Use any of {QOIS}")
        if self.match_config.refinement_method != "none":
            validate_covariates(self.index, self.match_config.covariates)

        sets = {q: self._match_qoi(replace(self.match_config, qoi=q)) for q in qois}
        self._result = MatchingResult(
            sets=sets,
            match_config=self.match_config,
            panel_config=self.config,
        )
        return self._result

    @property
    def result(self) -> MatchingResult:
        """Lazily match and cache the result."""
        if self._result is None:
            self._result = self.match()
        return self._result

    def _match_qoi(self, config: MatchConfig) -> tuple[MatchedSet, ...]:
        events = TreatmentEventDetector(self.index, config).detect()
        sets = HistoryMatcher(self.index, config).match(events)
        RefinementEngine(self.index, config).refine_all(sets)

        n_empty = sum(1 for ms in sets if ms.is_empty)
        logger.info(
            "Matched %s: %s sets (%s usable, %s empty), refinement '%s'",
            config.qoi,
            f"{len(sets):,}",
            f"{len(sets) - n_empty:,}",
            f"{n_empty:,}",
            config.refinement_method,
        )
        return tuple(ms.freeze() for ms in sets)


def panel_match(
    df: pd.DataFrame,
    config: PanelConfig | None = None,
    qois: Sequence[str] | None = None,
    **options: Any,
) -> MatchingResult:
    """Functional shortcut for :class:`PanelMatcher`.

    ``options`` are passed to :meth:`MatchConfig.from_dict`, so both
    ``size_match=5`` and ``**{"size.match": 5}`` are accepted.
    """
    match_config = MatchConfig.from_dict(options)
    return PanelMatcher(df, config, match_config).match(qois)
