"""Covariate balance between treated units and their weighted controls."""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import pandas as pd

from .._errors import ConfigurationError
from ..matching.sets import MatchingResult
from ..panels.index import PanelIndex

logger = logging.getLogger(__name__)


class BalanceCalculator:
    """Standardized covariate differences, per covariate and period offset.

    For one covariate ``x`` and offset ``k`` (relative to the event time),
    each usable matched set contributes
    ``x(u, t+k) - sum_c w_c x(c, t+k)``, divided by the standard deviation
    of ``x`` over all panel observations. The balance is the average over
    matched sets. Values near zero indicate good balance.

    Parameters
    ----------
    result : MatchingResult
        Matched sets with weights.
    data : PanelIndex or pd.DataFrame
        Panel holding the covariates.
    covariates : sequence of str, optional
        Covariate columns. Defaults to the variables of the matching
        covariate formula.
    """

    def __init__(
        self,
        result: MatchingResult,
        data: PanelIndex | pd.DataFrame,
        covariates: Sequence[str] | None = None,
    ):
        self.result = result
        if isinstance(data, PanelIndex):
            self.index = data
        else:
            self.index = PanelIndex(data, config=result.panel_config)

        if covariates is None:
            covariates = [term.name for term in result.match_config.covariates]
        self.covariates = list(dict.fromkeys(covariates))
        if not self.covariates:
            raise ConfigurationError("Balance needs at least one covariate")
        missing = [c for c in self.covariates if not self.index.has_column(c)]
        if missing:
            raise ConfigurationError(f"Covariates not found in panel: {missing}")

    def default_offsets(self) -> list[int]:
        """Pre-treatment lag offsets ``-L..-1`` followed by the lead window."""
        cfg = self.result.match_config
        return list(range(-cfg.lag, 0)) + list(cfg.lead)

    def compute(
        self,
        qoi: str | None = None,
        offsets: Sequence[int] | None = None,
        use_equal_weights: bool = False,
    ) -> pd.DataFrame:
        """Balance table.

        Parameters
        ----------
        qoi : str, optional
            Quantity of interest. Defaults to the matched qoi.
        offsets : sequence of int, optional
            Period offsets relative to the event. Defaults to
            :meth:`default_offsets`.
        use_equal_weights : bool
            Weight every history-matched control equally, which gives
            the balance before refinement.

        Returns
        -------
        pd.DataFrame
            Index ``offset``, one column per covariate.
        """
        qoi = qoi or self.result.match_config.qoi
        offsets = list(offsets) if offsets is not None else self.default_offsets()
        idx = self.index

        pairs = []
        for ms in self.result[qoi]:
            if use_equal_weights:
                if not ms.controls:
                    continue
                controls = list(ms.controls)
                w = np.full(len(controls), 1.0 / len(controls))
            else:
                if ms.is_empty:
                    continue
                weighted = ms.weighted_controls
                controls = list(weighted)
                w = np.array(list(weighted.values()), dtype=float)
            rows = np.array([idx.unit_pos(c) for c in controls])
            pairs.append((idx.unit_pos(ms.unit), ms.event.period, rows, w))

        table = {}
        for name in self.covariates:
            values = idx.values(name)
            sd = float(np.nanstd(values[idx.observed], ddof=1)) if idx.observed.sum() > 1 else np.nan
            column = []
            for k in offsets:
                diffs = []
                for u, p, rows, w in pairs:
                    col = p + k
                    if not 0 <= col < idx.n_periods:
                        continue
                    x_u = values[u, col]
                    x_c = values[rows, col]
                    valid = ~np.isnan(x_c)
                    if np.isnan(x_u) or not valid.any():
                        continue
                    w_valid = w[valid] / w[valid].sum()
                    diffs.append(x_u - float(w_valid @ x_c[valid]))
                if diffs and np.isfinite(sd) and sd > 0:
                    column.append(float(np.mean(diffs)) / sd)
                else:
                    column.append(np.nan)
            table[name] = column

        df = pd.DataFrame(table, index=pd.Index(offsets, name="offset"))
        logger.info(
            "Balance (%s, %s): %s covariates x %s offsets over %s matched sets",
            qoi,
            "equal weights" if use_equal_weights else "refined weights",
            len(self.covariates),
            len(offsets),
            f"{len(pairs):,}",
        )
        return df

    def compare(
        self,
        qoi: str | None = None,
        offsets: Sequence[int] | None = None,
    ) -> pd.DataFrame:
        """Long table of refined vs. equal-weight (unrefined) balance.

        Returns
        -------
        pd.DataFrame
            Columns: covariate, offset, refined, unrefined.
        """
        refined = self.compute(qoi, offsets).reset_index().melt(
            id_vars="offset", var_name="covariate", value_name="refined"
        )
        unrefined = self.compute(qoi, offsets, use_equal_weights=True).reset_index().melt(
            id_vars="offset", var_name="covariate", value_name="unrefined"
        )
        df = refined.merge(unrefined, on=["covariate", "offset"], how="left")
        return df[["covariate", "offset", "refined", "unrefined"]]
