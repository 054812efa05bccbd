from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from processing.exceptions import MismatchedIndividual
from processing.metrics import CRS_ATTR
from processing.tracks import ID_COL, TIME_COL, BatchResult

logger = logging.getLogger(__name__)

START_COL = "start_time"
END_COL = "end_time"
DURATION_COL = "duration"
_INTERVAL = "_interval"

_NAMED_FUNCS = {"mean", "sum", "count", "min", "max", "median"}


def _in_timezone(values: pd.Series, tz) -> pd.Series:
    if values.dt.tz is None:
        return values if tz is None else values.dt.tz_localize("UTC").dt.tz_convert(tz)
    return values.dt.tz_convert(tz)


@dataclass(frozen=True)
class AggregationField:
    """One output column: ``func`` applied to ``source`` over an interval's events.

    ``source`` is an event column or ``"duration"`` (end minus start, seconds).
    """

    name: str
    source: str = "magnitude"
    func: str | Callable[[pd.Series], float] = "mean"

    def __post_init__(self):
        if isinstance(self.func, str) and self.func not in _NAMED_FUNCS:
            raise ValueError(f"Unknown aggregation '{self.func}' for field '{self.name}'")


DEFAULT_FIELDS: Sequence[AggregationField] = (
    AggregationField("mean_magnitude", "magnitude", "mean"),
    AggregationField("dive_duration_s", DURATION_COL, "sum"),
    AggregationField("event_count", "magnitude", "count"),
)


class IntervalAggregator:
    """Summarise sparse events over the intervals of a regular track.

    An event counts towards fix ``i`` only when both its start and end fall in
    ``(T[i-1], T[i]]``; events straddling a fix time count towards neither
    neighbour. Intervals with no events get 0, the first fix gets NaN.
    """

    def __init__(self, fields: Optional[Iterable[AggregationField]] = None):
        self.fields: List[AggregationField] = list(fields or DEFAULT_FIELDS)
        names = [f.name for f in self.fields]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate aggregation field names: {names}")

    @classmethod
    def from_config(cls, fields_cfg: Optional[List[Dict[str, Any]]]) -> "IntervalAggregator":
        if not fields_cfg:
            return cls()
        return cls(AggregationField(f["name"], f.get("source", "magnitude"), f.get("func", "mean")) for f in fields_cfg)

    @staticmethod
    def locate_events(track_times: pd.Series, starts: pd.Series, ends: pd.Series) -> np.ndarray:
        """Index of the regular fix whose interval fully contains each event, or -1.

        Event times are brought into the track's timezone first; naive times
        on either side are taken as UTC.
        """
        tz = track_times.dt.tz
        starts = _in_timezone(starts, tz)
        ends = _in_timezone(ends, tz)
        t0 = track_times.iloc[0]
        t = (track_times - t0).dt.total_seconds().to_numpy(dtype=float)
        s = (starts - t0).dt.total_seconds().to_numpy(dtype=float)
        e = (ends - t0).dt.total_seconds().to_numpy(dtype=float)
        # first i with t[i] >= value, i.e. value in (t[i-1], t[i]]
        s_idx = np.searchsorted(t, s, side="left")
        e_idx = np.searchsorted(t, e, side="left")
        inside = (s_idx == e_idx) & (s_idx >= 1) & (s_idx < len(t))
        return np.where(inside, s_idx, -1)

    def _prepare_events(self, events: pd.DataFrame) -> pd.DataFrame:
        missing = [c for c in (ID_COL, START_COL, END_COL) if c not in events.columns]
        if missing:
            raise ValueError(f"Event table is missing columns: {missing}")
        ev = events.dropna(subset=[ID_COL, START_COL, END_COL]).copy()
        ev[ID_COL] = ev[ID_COL].astype(str)
        ev[START_COL] = pd.to_datetime(ev[START_COL])
        ev[END_COL] = pd.to_datetime(ev[END_COL])
        reversed_ = ev[START_COL] > ev[END_COL]
        if reversed_.any():
            logger.warning("Dropping %d events whose start is after their end", int(reversed_.sum()))
            ev = ev[~reversed_].copy()
        ev[DURATION_COL] = (ev[END_COL] - ev[START_COL]).dt.total_seconds()
        sources = []
        for field in self.fields:
            if field.source not in ev.columns:
                raise ValueError(f"Event table has no column '{field.source}' for field '{field.name}'")
            if field.source not in sources:
                sources.append(field.source)
        # every field must summarise the same events, or counts and means disagree
        incomplete = ev[sources].isna().any(axis=1)
        if incomplete.any():
            logger.warning("Dropping %d events with missing %s", int(incomplete.sum()), ", ".join(sources))
            ev = ev[~incomplete]
        return ev.sort_values(START_COL, kind="mergesort")

    def aggregate_track(self, track: pd.DataFrame, events: pd.DataFrame) -> pd.DataFrame:
        """Attach the configured summaries to every fix of one regular track.

        ``events`` must already belong to the track's individual.
        """
        return self._aggregate_prepared(track, self._prepare_events(events))

    def _aggregate_prepared(self, track: pd.DataFrame, events: pd.DataFrame) -> pd.DataFrame:
        out = track.copy()
        n = len(out)
        times = pd.to_datetime(out[TIME_COL])
        out["interval_s"] = times.diff().dt.total_seconds()
        if n == 0:
            for field in self.fields:
                out[field.name] = pd.Series(dtype=float)
            return out

        ev = events
        if len(ev):
            ev = ev.assign(**{_INTERVAL: self.locate_events(times, ev[START_COL], ev[END_COL])})
            ev = ev[ev[_INTERVAL] >= 0]
        grouped = ev.groupby(_INTERVAL) if len(ev) else None

        for field in self.fields:
            values = np.zeros(n, dtype=float)
            if grouped is not None:
                summary = grouped[field.source].agg(field.func)
                values[summary.index.to_numpy(dtype=int)] = summary.to_numpy(dtype=float)
            values[0] = np.nan
            out[field.name] = values
        return out

    def aggregate(self, tracks: Dict[str, pd.DataFrame], events: pd.DataFrame) -> BatchResult:
        ev = self._prepare_events(events)
        result = BatchResult()

        by_individual = {str(k): g for k, g in ev.groupby(ID_COL, sort=False)}
        for individual_id in sorted(by_individual.keys() - tracks.keys()):
            result.fail("aggregate", MismatchedIndividual(individual_id, len(by_individual[individual_id])))

        empty = ev.iloc[0:0]
        matched = 0
        for individual_id, track in tracks.items():
            augmented = self._aggregate_prepared(track, by_individual.get(individual_id, empty))
            augmented.attrs[CRS_ATTR] = track.attrs.get(CRS_ATTR)
            result.tracks[individual_id] = augmented
            if "event_count" in augmented.columns:
                matched += int(np.nansum(augmented["event_count"]))
        if "event_count" in {f.name for f in self.fields}:
            logger.info("Assigned %d of %d events to track intervals", matched, len(ev))
        return result
