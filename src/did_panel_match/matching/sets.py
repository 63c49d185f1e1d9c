"""Matched sets and matching results."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Hashable, Iterator, Mapping

import pandas as pd

from .._types import MatchConfig, PanelConfig
from ..treatment.events import TreatedEvent

# Flags a matched set can carry
HISTORY_OUT_OF_RANGE = "history_out_of_range"
TREATED_UNOBSERVED = "treated_unobserved"
TREATMENT_REVERSAL = "treatment_reversal"
LISTWISE_DELETED = "listwise_deleted"
REFINEMENT_FALLBACK = "refinement_fallback"
NO_CONTROLS = "no_controls"


@dataclass(eq=False)
class MatchedSet:
    """A treated event and its eligible control units.

    Created unweighted by the history matcher, given ``scores`` by the
    refinement engine and ``weights`` by the weight normalizer, then
    frozen. After :meth:`freeze` every attribute is read-only.
    """

    event: TreatedEvent
    controls: tuple[Hashable, ...] = ()
    scores: dict[Hashable, float] = field(default_factory=dict)
    weights: dict[Hashable, float] = field(default_factory=dict)
    flags: set[str] = field(default_factory=set)
    _frozen: bool = field(default=False, repr=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_frozen", False):
            raise AttributeError(f"MatchedSet for {self.event} is frozen")
        super().__setattr__(name, value)

    def __len__(self) -> int:
        return len(self.controls)

    @property
    def unit(self) -> Hashable:
        return self.event.unit

    @property
    def time(self) -> float:
        return self.event.time

    @property
    def is_empty(self) -> bool:
        """True when no control carries (or can carry) positive weight."""
        if not self.controls:
            return True
        if self.weights:
            return not any(w > 0 for w in self.weights.values())
        return False

    @property
    def weighted_controls(self) -> dict[Hashable, float]:
        """Controls with strictly positive weight."""
        return {c: w for c, w in self.weights.items() if w > 0}

    def flag(self, name: str) -> None:
        if self._frozen:
            raise AttributeError(f"MatchedSet for {self.event} is frozen")
        self.flags.add(name)

    def clear(self, reason: str) -> None:
        """Drop every control and record why."""
        self.controls = ()
        self.scores = {}
        self.weights = {}
        self.flag(reason)

    def freeze(self) -> "MatchedSet":
        object.__setattr__(self, "scores", MappingProxyType(dict(self.scores)))
        object.__setattr__(self, "weights", MappingProxyType(dict(self.weights)))
        object.__setattr__(self, "flags", frozenset(self.flags))
        object.__setattr__(self, "_frozen", True)
        return self


@dataclass(frozen=True)
class MatchingResult:
    """Matched sets per quantity of interest, with the producing configuration.

    Parameters
    ----------
    sets : Mapping[str, tuple[MatchedSet, ...]]
        Matched sets keyed by qoi, each ordered by (unit, event time).
    match_config : MatchConfig
        Options that produced the sets (lag, lead, refinement method, ...).
    panel_config : PanelConfig
        Column mapping of the source panel.
    """

    sets: Mapping[str, tuple[MatchedSet, ...]]
    match_config: MatchConfig
    panel_config: PanelConfig

    def __getitem__(self, qoi: str) -> tuple[MatchedSet, ...]:
        try:
            return self.sets[qoi]
        except KeyError:
            raise KeyError(
                f"No matched sets for qoi '{qoi}'. Available: {list(self.sets)}"
            ) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self.sets)

    @property
    def qois(self) -> list[str]:
        return list(self.sets)

    @property
    def matched_sets(self) -> tuple[MatchedSet, ...]:
        """Sets for the configured qoi."""
        return self[self.match_config.qoi]

    def summary(self, qoi: str | None = None) -> pd.DataFrame:
        """One row per matched set: size, weighted size and flags."""
        c = self.panel_config
        qoi = qoi or self.match_config.qoi
        rows = []
        for ms in self[qoi]:
            rows.append({
                c.unit_col: ms.unit,
                c.time_col: ms.time,
                "n_controls": len(ms.controls),
                "n_weighted": len(ms.weighted_controls),
                "is_empty": ms.is_empty,
                "flags": ",".join(sorted(ms.flags)),
            })
        columns = [c.unit_col, c.time_col, "n_controls", "n_weighted", "is_empty", "flags"]
        return pd.DataFrame(rows, columns=columns)

    def set_sizes(self, qoi: str | None = None, weighted: bool = False) -> pd.Series:
        """Distribution of matched-set sizes (for plotting tools)."""
        col = "n_weighted" if weighted else "n_controls"
        return self.summary(qoi)[col].value_counts().sort_index()

    def to_frame(self, qoi: str | None = None) -> pd.DataFrame:
        """Long format: one row per (event, control) with score and weight."""
        c = self.panel_config
        qoi = qoi or self.match_config.qoi
        rows = []
        for ms in self[qoi]:
            for ctrl in ms.controls:
                rows.append({
                    c.unit_col: ms.unit,
                    c.time_col: ms.time,
                    "control": ctrl,
                    "score": ms.scores.get(ctrl, float("nan")),
                    "weight": ms.weights.get(ctrl, 0.0),
                })
        columns = [c.unit_col, c.time_col, "control", "score", "weight"]
        return pd.DataFrame(rows, columns=columns)

    def flagged(self, flag: str, qoi: str | None = None) -> list[MatchedSet]:
        qoi = qoi or self.match_config.qoi
        return [ms for ms in self[qoi] if flag in ms.flags]
