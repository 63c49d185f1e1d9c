"""Panel index: dense (unit x period) lookup over raw panel records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Hashable, Sequence

import numpy as np
import pandas as pd

from .._errors import MalformedPanelError
from .._types import PanelConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PanelRecord:
    """One (unit, time) observation. Missing values are NaN."""

    unit: Hashable
    time: float
    treatment: float
    outcome: float
    covariates: dict[str, float] = field(default_factory=dict)


class PanelIndex:
    """Normalize raw panel records into a (unit, period) lookup structure.

    Every indexed column is stored as a dense ``(n_units, n_periods)``
    float array. Periods are the sorted distinct time values of the whole
    panel, so "one period earlier" means the previous value on that grid.
    A record that is absent from the input is distinct from a record that
    is present with a missing treatment: the former has ``observed`` False,
    the latter ``observed`` True and a NaN value.

    Parameters
    ----------
    df : pd.DataFrame
        Panel data with at least ``unit_col``, ``time_col`` and
        ``treatment_col``.
    config : PanelConfig, optional
        Column name mapping. Uses defaults if not provided.
    covariates : sequence of str, optional
        Extra numeric columns to index. If None, every numeric column
        other than the unit and time columns is indexed.

    Raises
    ------
    MalformedPanelError
        On missing required columns, duplicate (unit, time) pairs,
        non-numeric or missing time values, or treatment values outside
        {0, 1, NA}.

    Example
    -------
    >>> config = PanelConfig(unit_col="wbcode2", time_col="year", treatment_col="dem", outcome_col="y")
    >>> index = PanelIndex(df, config=config)
    >>> index.record(4, 1992)
    """

    def __init__(
        self,
        df: pd.DataFrame,
        config: PanelConfig | None = None,
        covariates: Sequence[str] | None = None,
    ):
        self.config = config or PanelConfig()
        self._df = self._validate_input(df, covariates)
        self._build()

    def _validate_input(
        self, df: pd.DataFrame, covariates: Sequence[str] | None
    ) -> pd.DataFrame:
        """Check required columns, duplicates and value domains."""
        c = self.config
        required = [c.unit_col, c.time_col, c.treatment_col]
        if covariates is not None:
            required += [col for col in covariates if col not in required]
        missing = [col for col in required if col not in df.columns]
        if missing:
            raise MalformedPanelError(
                f"Missing required columns: {missing}. "
                f"Available: {sorted(map(str, df.columns.tolist()))}"
            )

        df = df.copy()
        if df[c.unit_col].isna().any():
            raise MalformedPanelError(f"Column '{c.unit_col}' contains missing unit ids")

        times = pd.to_numeric(df[c.time_col], errors="coerce")
        if times.isna().any():
            bad = df.loc[times.isna(), c.time_col].unique()[:5].tolist()
            raise MalformedPanelError(
                f"Column '{c.time_col}' must be numeric and non-missing; got {bad}"
            )
        df[c.time_col] = times

        dupes = df.duplicated([c.unit_col, c.time_col], keep=False)
        if dupes.any():
            examples = (
                df.loc[dupes, [c.unit_col, c.time_col]]
                .drop_duplicates()
                .head(5)
                .itertuples(index=False, name=None)
            )
            raise MalformedPanelError(
                f"Duplicate ({c.unit_col}, {c.time_col}) pairs: {list(examples)}"
            )

        raw = df[c.treatment_col]
        treat = pd.to_numeric(raw, errors="coerce").astype("float64")
        invalid = (treat.notna() & ~treat.isin([0.0, 1.0])) | (treat.isna() & raw.notna())
        if invalid.any():
            bad = raw[invalid].unique()[:5].tolist()
            raise MalformedPanelError(
                f"Column '{c.treatment_col}' must be 0, 1 or NA; got {bad}"
            )
        df[c.treatment_col] = treat

        if covariates is None:
            skip = {c.unit_col, c.time_col}
            numeric = [
                col for col in df.columns
                if col not in skip
                and (pd.api.types.is_numeric_dtype(df[col]) or pd.api.types.is_bool_dtype(df[col]))
            ]
            self._columns = numeric
        else:
            self._columns = list(dict.fromkeys([c.treatment_col, *covariates]))
        if c.outcome_col in df.columns and c.outcome_col not in self._columns:
            self._columns.append(c.outcome_col)

        n_obs = len(df)
        n_units = df[c.unit_col].nunique()
        logger.info(
            "PanelIndex initialized: %s observations, %s units",
            f"{n_obs:,}",
            f"{n_units:,}",
        )
        return df

    def _build(self) -> None:
        c = self.config
        df = self._df

        self.units = pd.Index(df[c.unit_col].unique()).sort_values()
        self.periods = np.sort(df[c.time_col].unique()).astype(float)
        self.unit_ids = self.units.tolist()
        self._unit_pos = {u: i for i, u in enumerate(self.unit_ids)}
        self._period_pos = {t: j for j, t in enumerate(self.periods)}

        rows = self.units.get_indexer(df[c.unit_col])
        cols = np.searchsorted(self.periods, df[c.time_col].to_numpy(dtype=float))
        shape = (len(self.units), len(self.periods))

        observed = np.zeros(shape, dtype=bool)
        observed[rows, cols] = True
        observed.flags.writeable = False
        self.observed = observed

        self._arrays: dict[str, np.ndarray] = {}
        for col in self._columns:
            values = pd.to_numeric(df[col], errors="coerce").astype("float64")
            arr = np.full(shape, np.nan)
            arr[rows, cols] = values.to_numpy(dtype=float)
            arr.flags.writeable = False
            self._arrays[col] = arr

        diffs = np.diff(self.periods)
        self.time_step = float(diffs.min()) if len(diffs) else 1.0
        self.is_regular = bool(len(diffs) == 0 or np.allclose(diffs, diffs[0]))
        if not self.is_regular:
            logger.warning(
                "Irregular time spacing: steps between periods range from %s to %s; "
                "offsets are counted in observed periods",
                diffs.min(),
                diffs.max(),
            )

        logger.info(
            "Panel indexed: %s units x %s periods (%s to %s), %s columns",
            f"{shape[0]:,}",
            f"{shape[1]:,}",
            self.periods[0] if shape[1] else None,
            self.periods[-1] if shape[1] else None,
            len(self._arrays),
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def n_units(self) -> int:
        return len(self.units)

    @property
    def n_periods(self) -> int:
        return len(self.periods)

    @property
    def columns(self) -> list[str]:
        return list(self._arrays)

    @property
    def treatment(self) -> np.ndarray:
        return self._arrays[self.config.treatment_col]

    @property
    def outcome(self) -> np.ndarray:
        c = self.config
        if c.outcome_col not in self._arrays:
            raise KeyError(f"Outcome column '{c.outcome_col}' is not in the panel")
        return self._arrays[c.outcome_col]

    def has_column(self, name: str) -> bool:
        return name in self._arrays

    def values(self, name: str) -> np.ndarray:
        """Read-only ``(n_units, n_periods)`` array for an indexed column."""
        try:
            return self._arrays[name]
        except KeyError:
            raise KeyError(
                f"Column '{name}' is not indexed. Available: {self.columns}"
            ) from None

    def unit_pos(self, unit: Hashable) -> int:
        return self._unit_pos[unit]

    def period_pos(self, time: Any) -> int:
        return self._period_pos[float(time)]

    def time_at(self, period: int) -> float:
        return float(self.periods[period])

    def record(self, unit: Hashable, time: Any) -> PanelRecord | None:
        """Return the record at (unit, time), or None if it is absent."""
        i = self._unit_pos.get(unit)
        j = self._period_pos.get(float(time))
        if i is None or j is None or not self.observed[i, j]:
            return None

        c = self.config
        special = {c.treatment_col, c.outcome_col}
        outcome = (
            float(self._arrays[c.outcome_col][i, j])
            if c.outcome_col in self._arrays
            else np.nan
        )
        return PanelRecord(
            unit=unit,
            time=float(self.periods[j]),
            treatment=float(self.treatment[i, j]),
            outcome=outcome,
            covariates={
                name: float(arr[i, j])
                for name, arr in self._arrays.items()
                if name not in special
            },
        )

    def unit_times(self, unit: Hashable) -> list[float]:
        """Ordered observed time values of one unit."""
        i = self._unit_pos[unit]
        return self.periods[self.observed[i]].tolist()

    def summary(self) -> pd.DataFrame:
        """Return one-row panel summary statistics."""
        treat = self.treatment[self.observed]
        stats = {
            "n_obs": int(self.observed.sum()),
            "n_units": self.n_units,
            "n_periods": self.n_periods,
            "time_min": self.periods.min() if self.n_periods else np.nan,
            "time_max": self.periods.max() if self.n_periods else np.nan,
            "time_step": self.time_step,
            "is_regular": self.is_regular,
            "n_treated_obs": int(np.nansum(treat)),
            "n_missing_treatment": int(np.isnan(treat).sum()),
        }
        return pd.DataFrame([stats])

    def gaps(self) -> pd.DataFrame:
        """Unit-level coverage statistics (see :class:`CoverageAnalyzer`)."""
        from ..diagnostics.coverage import CoverageAnalyzer

        return CoverageAnalyzer(self.config).compute(self)
