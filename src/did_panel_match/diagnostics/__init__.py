"""Diagnostics for panel coverage and covariate balance."""

from .balance import BalanceCalculator
from .coverage import CoverageAnalyzer

__all__ = ["BalanceCalculator", "CoverageAnalyzer"]
