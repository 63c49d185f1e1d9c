"""Treatment event detection for matched-set construction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Hashable

import numpy as np
import pandas as pd

from .._types import MatchConfig
from ..panels.index import PanelIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class TreatedEvent:
    """A (unit, time) pair where the unit switches treatment status.

    ``period`` is the position of ``time`` on the panel's period grid.
    """

    unit: Hashable
    time: float
    period: int


class TreatmentEventDetector:
    """Find every switch in treatment status that defines a treated event.

    For ``qoi="att"`` an event is a 0 -> 1 switch; for ``"atc"`` and
    ``"art"`` it is a 1 -> 0 switch. Both the event period and the period
    before it must be observed with a non-missing treatment value, so the
    first panel period never hosts an event. Events whose lag or lead
    window falls outside the panel are still reported; the history
    matcher later gives them an empty matched set.

    Parameters
    ----------
    index : PanelIndex
        Indexed panel.
    config : MatchConfig
        Matching options (lag, lead, qoi).
    """

    def __init__(self, index: PanelIndex, config: MatchConfig):
        self.index = index
        self.config = config
        self._events: tuple[TreatedEvent, ...] | None = None

    def detect(self) -> tuple[TreatedEvent, ...]:
        """Detect treated events.

        Returns
        -------
        tuple[TreatedEvent, ...]
            Events ordered by (unit, event time).
        """
        d = self.index.treatment
        before = self.config.reference_status
        after = 1 - before

        switched = np.zeros(d.shape, dtype=bool)
        if d.shape[1] > 1:
            switched[:, 1:] = (d[:, :-1] == before) & (d[:, 1:] == after)

        rows, cols = np.nonzero(switched)
        units = self.index.unit_ids
        events = tuple(
            TreatedEvent(units[i], self.index.time_at(j), int(j))
            for i, j in zip(rows, cols)
        )

        self._events = events
        n_units = len({e.unit for e in events})
        logger.info(
            "Detected %s %s events across %s units (%d -> %d switches)",
            f"{len(events):,}",
            self.config.qoi,
            f"{n_units:,}",
            before,
            after,
        )
        return events

    @property
    def events(self) -> tuple[TreatedEvent, ...]:
        """Lazily detect and cache the events."""
        if self._events is None:
            self._events = self.detect()
        return self._events

    def window_in_range(self, event: TreatedEvent) -> tuple[bool, bool]:
        """Whether the lag window and the lead window fit inside the panel."""
        lag_ok = event.period - self.config.lag >= 0
        lead_ok = event.period + self.config.max_lead < self.index.n_periods
        return lag_ok, lead_ok

    def summary(self) -> pd.DataFrame:
        """Return one row per event with window-coverage flags."""
        c = self.index.config
        rows = []
        for event in self.events:
            lag_ok, lead_ok = self.window_in_range(event)
            rows.append({
                c.unit_col: event.unit,
                c.time_col: event.time,
                "history_in_range": lag_ok,
                "lead_in_range": lead_ok,
            })
        return pd.DataFrame(rows, columns=[c.unit_col, c.time_col, "history_in_range", "lead_in_range"])
