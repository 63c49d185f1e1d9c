"""Matched-set construction by treatment history."""

from .sets import MatchedSet, MatchingResult
from .history import HistoryMatcher
from .matcher import PanelMatcher, panel_match

__all__ = ["MatchedSet", "MatchingResult", "HistoryMatcher", "PanelMatcher", "panel_match"]
