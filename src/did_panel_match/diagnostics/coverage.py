"""Panel coverage analysis: gaps, consecutive observations, balance."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from .._types import PanelConfig

if TYPE_CHECKING:
    from ..panels.index import PanelIndex


class CoverageAnalyzer:
    """Analyze panel coverage on the period grid of a :class:`PanelIndex`.

    A gap is a run of one or more grid periods, inside a unit's observed
    span, for which the unit has no record.

    Parameters
    ----------
    config : PanelConfig, optional
        Column name mapping.
    """

    def __init__(self, config: PanelConfig | None = None):
        self.config = config or PanelConfig()

    def compute(self, index: PanelIndex) -> pd.DataFrame:
        """Compute unit-level coverage statistics.

        Returns
        -------
        pd.DataFrame
            One row per unit with columns: n_periods, time_span,
            n_consecutive, n_gaps, n_missing_periods, coverage_rate,
            min_time, max_time.
        """
        c = self.config
        rows = []
        for i, unit in enumerate(index.units):
            positions = np.flatnonzero(index.observed[i])
            if len(positions) == 0:
                rows.append({
                    c.unit_col: unit,
                    "n_periods": 0,
                    "time_span": 0,
                    "n_consecutive": 0,
                    "n_gaps": 0,
                    "n_missing_periods": 0,
                    "coverage_rate": 0.0,
                    "min_time": np.nan,
                    "max_time": np.nan,
                })
                continue

            n_periods = len(positions)
            time_span = int(positions[-1] - positions[0]) + 1
            diffs = np.diff(positions)
            n_consecutive = int(np.sum(diffs == 1)) + 1 if len(diffs) > 0 else 1
            n_gaps = int(np.sum(diffs > 1))

            rows.append({
                c.unit_col: unit,
                "n_periods": n_periods,
                "time_span": time_span,
                "n_consecutive": n_consecutive,
                "n_gaps": n_gaps,
                "n_missing_periods": time_span - n_periods,
                "coverage_rate": round(n_periods / time_span, 4),
                "min_time": index.periods[positions[0]],
                "max_time": index.periods[positions[-1]],
            })

        return pd.DataFrame(rows)

    def summary(self, index: PanelIndex) -> pd.DataFrame:
        """Aggregate coverage statistics across all units.

        Returns
        -------
        pd.DataFrame
            One-row DataFrame with mean, median, min, max for each stat.
        """
        coverage = self.compute(index)
        numeric_cols = ["n_periods", "time_span", "n_consecutive", "n_gaps", "coverage_rate"]

        stats = {}
        for col in numeric_cols:
            stats[f"{col}_mean"] = coverage[col].mean()
            stats[f"{col}_median"] = coverage[col].median()
            stats[f"{col}_min"] = coverage[col].min()
            stats[f"{col}_max"] = coverage[col].max()

        stats["n_units"] = len(coverage)
        stats["n_balanced"] = int(
            ((coverage["coverage_rate"] == 1.0) & (coverage["n_periods"] == index.n_periods)).sum()
        )
        stats["pct_balanced"] = (
            round(stats["n_balanced"] / stats["n_units"] * 100, 1) if stats["n_units"] else 0.0
        )
        stats["is_regular"] = index.is_regular

        return pd.DataFrame([stats])
