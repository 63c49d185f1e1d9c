"""Exception taxonomy for did-panel-match."""

from __future__ import annotations


class PanelMatchError(Exception):
    """Base class for all did-panel-match errors."""


class MalformedPanelError(PanelMatchError, ValueError):
    """Input rows are duplicated, contradictory, or missing required columns."""


class ConfigurationError(PanelMatchError, ValueError):
    """An option value or a combination of options is invalid."""


class RefinementConvergenceError(PanelMatchError, RuntimeError):
    """A propensity model failed to converge for one matched set."""


class InsufficientDataError(PanelMatchError, ValueError):
    """A lead offset (or a whole qoi) has no usable matched sets.

    Parameters
    ----------
    message : str
        Human-readable description.
    lead : int, optional
        Lead offset the error refers to.
    """

    def __init__(self, message: str, lead: int | None = None):
        super().__init__(message)
        self.lead = lead
