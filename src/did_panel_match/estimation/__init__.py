"""Bootstrap effect estimation."""

from .bootstrap import BootstrapEstimator, Estimate, LeadEstimate, panel_estimate

__all__ = ["BootstrapEstimator", "Estimate", "LeadEstimate", "panel_estimate"]
