"""did-panel-match: Matched-set causal effect estimation for panel data."""

from ._errors import (
    ConfigurationError,
    InsufficientDataError,
    MalformedPanelError,
    PanelMatchError,
    RefinementConvergenceError,
)
from ._formula import CovariateTerm, parse_covariate_formula
from ._types import BootstrapConfig, MatchConfig, PanelConfig
from .diagnostics import BalanceCalculator, CoverageAnalyzer
from .estimation import BootstrapEstimator, Estimate, LeadEstimate, panel_estimate
from .matching import (
    HistoryMatcher,
    MatchedSet,
    MatchingResult,
    PanelMatcher,
    panel_match,
)
from .panels import PanelIndex, PanelRecord
from .refinement import RefinementEngine, WeightNormalizer
from .treatment import TreatedEvent, TreatmentEventDetector

__all__ = [
    "PanelConfig",
    "MatchConfig",
    "BootstrapConfig",
    "CovariateTerm",
    "parse_covariate_formula",
    "PanelIndex",
    "PanelRecord",
    "TreatedEvent",
    "TreatmentEventDetector",
    "HistoryMatcher",
    "MatchedSet",
    "MatchingResult",
    "PanelMatcher",
    "panel_match",
    "RefinementEngine",
    "WeightNormalizer",
    "BootstrapEstimator",
    "Estimate",
    "LeadEstimate",
    "panel_estimate",
    "BalanceCalculator",
    "CoverageAnalyzer",
    "PanelMatchError",
    "MalformedPanelError",
    "ConfigurationError",
    "RefinementConvergenceError",
    "InsufficientDataError",
]

__version__ = "0.1.0"
