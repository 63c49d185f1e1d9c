"""Treatment-history matching: raw matched sets for treated events."""

from __future__ import annotations

import logging
from typing import Hashable, Iterable

import numpy as np

from .._types import MatchConfig
from ..panels.index import PanelIndex
from ..treatment.events import TreatedEvent
from .sets import (
    HISTORY_OUT_OF_RANGE,
    NO_CONTROLS,
    TREATED_UNOBSERVED,
    TREATMENT_REVERSAL,
    MatchedSet,
)

logger = logging.getLogger(__name__)

# Code used for a missing treatment value inside a history pattern
_NA_CODE = 2


class HistoryMatcher:
    """Build raw matched sets by exact treatment-history matching.

    A control ``c`` is eligible for event ``(u, t)`` when it is observed in
    every period of ``[t-L, t]``, its treatment over ``[t-L, t-1]`` equals
    the event unit's, and at ``t`` it still holds the pre-event status
    (0 for att, 1 for atc/art).

    Candidates are looked up through a per-period table keyed by the
    treatment bit-pattern of the ``L`` preceding periods, so only units
    sharing the event unit's history are ever compared.

    Parameters
    ----------
    index : PanelIndex
        Indexed panel.
    config : MatchConfig
        Matching options. Uses ``lag``, ``lead``, ``qoi``,
        ``match_missing`` and ``forbid_treatment_reversal``.
    """

    def __init__(self, index: PanelIndex, config: MatchConfig):
        self.index = index
        self.config = config
        self._tables: dict[int, dict[bytes, np.ndarray]] = {}

    def match(self, events: Iterable[TreatedEvent]) -> list[MatchedSet]:
        """Build one raw (unweighted) matched set per event."""
        sets = [self.match_event(event) for event in events]

        n_empty = sum(1 for ms in sets if not ms.controls)
        sizes = [len(ms.controls) for ms in sets if ms.controls]
        logger.info(
            "History matching: %s sets, %s empty, median size %s",
            f"{len(sets):,}",
            f"{n_empty:,}",
            f"{np.median(sizes):.1f}" if sizes else "n/a",
        )
        return sets

    def match_event(self, event: TreatedEvent) -> MatchedSet:
        """Build the raw matched set for a single event."""
        ms = MatchedSet(event=event)
        controls, reason = self._eligible(event)
        if reason is not None:
            ms.flag(reason)
            logger.debug("Event %s: empty matched set (%s)", event, reason)
        ms.controls = controls
        return ms

    def eligible_controls(self, event: TreatedEvent) -> tuple[Hashable, ...]:
        return self._eligible(event)[0]

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _eligible(self, event: TreatedEvent) -> tuple[tuple[Hashable, ...], str | None]:
        cfg = self.config
        idx = self.index
        d = idx.treatment
        obs = idx.observed
        p = event.period
        lag = cfg.lag
        before = cfg.reference_status
        after = 1 - before
        u = idx.unit_pos(event.unit)

        if p - lag < 0:
            return (), HISTORY_OUT_OF_RANGE

        if not obs[u, p - lag:p + 1].all():
            return (), TREATED_UNOBSERVED

        history = d[u, p - lag:p]
        if not cfg.match_missing and np.isnan(history).any():
            return (), TREATED_UNOBSERVED

        lead_end = min(p + cfg.max_lead, idx.n_periods - 1)
        if cfg.forbid_treatment_reversal and lead_end > p:
            # Event unit must keep its new status through the lead window
            if np.any(d[u, p + 1:lead_end + 1] == before):
                return (), TREATMENT_REVERSAL

        candidates = self._candidates(p, history)

        # Observed over [t-L, t] and still in the pre-event status at t
        keep = obs[candidates, p - lag:p + 1].all(axis=1) & (d[candidates, p] == before)
        candidates = candidates[keep & (candidates != u)]

        if cfg.forbid_treatment_reversal and lead_end > p and len(candidates):
            switched = np.any(d[candidates, p + 1:lead_end + 1] == after, axis=1)
            candidates = candidates[~switched]

        if len(candidates) == 0:
            return (), NO_CONTROLS

        units = idx.unit_ids
        return tuple(units[i] for i in np.sort(candidates)), None

    def _candidates(self, p: int, history: np.ndarray) -> np.ndarray:
        """Rows whose treatment over the lag window is compatible with ``history``."""
        lag = self.config.lag
        block = self.index.treatment[:, p - lag:p]
        has_na = np.isnan(history).any() or np.isnan(block).any()

        if self.config.match_missing and has_na:
            # Missing values act as wildcards on either side
            equal = (block == history) | np.isnan(block) | np.isnan(history)
            return np.flatnonzero(equal.all(axis=1))

        table = self._pattern_table(p)
        return table.get(_encode(history), np.empty(0, dtype=np.intp))

    def _pattern_table(self, p: int) -> dict[bytes, np.ndarray]:
        """Map history bit-pattern -> unit rows for event period ``p`` (cached)."""
        table = self._tables.get(p)
        if table is None:
            lag = self.config.lag
            codes = _codes(self.index.treatment[:, p - lag:p])
            groups: dict[bytes, list[int]] = {}
            for row, pattern in enumerate(codes):
                # Patterns containing NA never match exactly
                if (pattern == _NA_CODE).any():
                    continue
                groups.setdefault(pattern.tobytes(), []).append(row)
            table = {k: np.asarray(v, dtype=np.intp) for k, v in groups.items()}
            self._tables[p] = table
        return table


def _codes(block: np.ndarray) -> np.ndarray:
    return np.where(np.isnan(block), _NA_CODE, block).astype(np.int8)


def _encode(history: np.ndarray) -> bytes:
    return _codes(history.reshape(1, -1))[0].tobytes()
