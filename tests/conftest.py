"""Shared fixtures for did-panel-match tests."""

import numpy as np
import pandas as pd
import pytest

from did_panel_match import PanelConfig


@pytest.fixture
def config() -> PanelConfig:
    return PanelConfig(unit_col="unit_id", time_col="year", treatment_col="treat", outcome_col="y")


@pytest.fixture
def scenario_panel() -> pd.DataFrame:
    """Three units over 1988-1992.

    - Unit 1: switches into treatment in 1991
    - Units 2-3: never treated
    - Covariate x is constant per unit: 1.0, 0.9, 3.0
    """
    treat = {1: [0, 0, 0, 1, 1], 2: [0] * 5, 3: [0] * 5}
    y = {
        1: [1.0, 2.0, 3.0, 10.0, 12.0],
        2: [1.0, 2.0, 3.0, 4.0, 5.0],
        3: [2.0, 3.0, 4.0, 6.0, 7.0],
    }
    x = {1: 1.0, 2: 0.9, 3: 3.0}
    rows = []
    for unit in (1, 2, 3):
        for j, year in enumerate(range(1988, 1993)):
            rows.append({
                "unit_id": unit,
                "year": year,
                "treat": treat[unit][j],
                "y": y[unit][j],
                "x": x[unit],
            })
    return pd.DataFrame(rows)


@pytest.fixture
def reversal_panel() -> pd.DataFrame:
    """Three units over 1988-1993.

    - Unit 1: treated from 1991 on
    - Unit 2: treated only in 1993
    - Unit 3: never treated
    """
    treat = {1: [0, 0, 0, 1, 1, 1], 2: [0, 0, 0, 0, 0, 1], 3: [0] * 6}
    rows = []
    for unit in (1, 2, 3):
        for j, year in enumerate(range(1988, 1994)):
            rows.append({
                "unit_id": unit,
                "year": year,
                "treat": treat[unit][j],
                "y": float(unit + j),
            })
    return pd.DataFrame(rows)


@pytest.fixture
def random_panel() -> pd.DataFrame:
    """Panel with 40 units, 10 years (2000-2009).

    - Units 1-20: staggered adoption between 2003 and 2008
    - Units 21-40: never treated
    - Outcome depends on x1 plus a treatment effect of 1.5
    """
    rng = np.random.default_rng(42)
    adoption = {unit: int(rng.integers(2003, 2009)) for unit in range(1, 21)}
    rows = []
    for unit in range(1, 41):
        base = rng.normal(0, 1)
        for year in range(2000, 2010):
            treated = int(unit in adoption and year >= adoption[unit])
            x1 = base + rng.normal(0, 0.3)
            rows.append({
                "unit_id": unit,
                "year": year,
                "treat": treated,
                "x1": x1,
                "x2": rng.normal(0, 1),
                "y": 2.0 * x1 + 1.5 * treated + rng.normal(0, 1),
            })
    return pd.DataFrame(rows)


@pytest.fixture
def reverse_panel() -> pd.DataFrame:
    """Unit 1 leaves treatment in year 3; units 2-3 stay treated."""
    treat = {1: [1, 1, 0, 0], 2: [1] * 4, 3: [1] * 4}
    y = {1: [5.0, 5.0, 2.0, 2.0], 2: [5.0] * 4, 3: [5.0, 5.0, 7.0, 7.0]}
    rows = []
    for unit in (1, 2, 3):
        for j, year in enumerate(range(1, 5)):
            rows.append({
                "unit_id": unit,
                "year": year,
                "treat": treat[unit][j],
                "y": y[unit][j],
            })
    return pd.DataFrame(rows)
