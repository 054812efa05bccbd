from __future__ import annotations

import logging
import math
from typing import Dict, Iterator, Optional, Tuple

import numpy as np
import pandas as pd

from processing.exceptions import InsufficientFixes, TrackError
from processing.metrics import CRS_ATTR, GeodesicMetric, PlanarMetric, crs_of, metric_for_crs
from processing.tracks import ID_COL, TIME_COL, BatchResult

logger = logging.getLogger(__name__)


class TrackResampler:
    def __init__(self, metric: Optional[PlanarMetric | GeodesicMetric] = None):
        self.metric = metric

    def _metric_for(self, track: pd.DataFrame) -> PlanarMetric | GeodesicMetric:
        if self.metric is not None:
            return self.metric
        return metric_for_crs(crs_of(track))

    @staticmethod
    def observed_intervals(tracks: Dict[str, pd.DataFrame]) -> np.ndarray:
        """All inter-fix gaps (seconds) within each track, pooled across individuals."""
        gaps = [
            pd.to_datetime(track[TIME_COL]).diff().dt.total_seconds().dropna().to_numpy(dtype=float)
            for track in tracks.values()
            if len(track) > 1
        ]
        if not gaps:
            return np.empty(0, dtype=float)
        return np.concatenate(gaps)

    def choose_interval(self, tracks: Dict[str, pd.DataFrame], percentile: float = 90, round_to_s: Optional[float] = None) -> float:
        """Pick the resampling step as a high percentile of native sampling gaps.

        With ``round_to_s`` the step is rounded up to a multiple of it.
        """
        gaps = self.observed_intervals(tracks)
        if gaps.size == 0:
            raise ValueError("No inter-fix intervals available; every track has fewer than 2 fixes")
        step = float(np.percentile(gaps, percentile))
        if round_to_s:
            step = math.ceil(step / round_to_s) * float(round_to_s)
        if step <= 0:
            raise ValueError(f"Resampling interval must be positive, got {step}")
        logger.info("Resampling interval: %.1f s (p%g of %d gaps)", step, percentile, gaps.size)
        return step

    def resample_track(self, track: pd.DataFrame, interval_s: float) -> pd.DataFrame:
        """Interpolate one track onto a fixed ``interval_s`` grid.

        Grid times start at the first fix and never pass the last one.
        """
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        individual_id = str(track[ID_COL].iloc[0]) if len(track) else "?"
        if len(track) < 2:
            raise InsufficientFixes(individual_id, len(track))
        metric = self._metric_for(track)

        times = pd.to_datetime(track[TIME_COL])
        grid = pd.date_range(start=times.iloc[0], end=times.iloc[-1], freq=pd.Timedelta(seconds=interval_s))

        t0 = times.iloc[0]
        t_orig = (times - t0).dt.total_seconds().to_numpy(dtype=float)
        t_grid = np.asarray((grid - t0).total_seconds(), dtype=float)
        # left bracket index, clipped so the last grid time still has a right neighbour
        left = np.clip(np.searchsorted(t_orig, t_grid, side="right") - 1, 0, len(t_orig) - 2)
        right = left + 1
        fraction = (t_grid - t_orig[left]) / (t_orig[right] - t_orig[left])

        x = track[metric.x_col].to_numpy(dtype=float)
        y = track[metric.y_col].to_numpy(dtype=float)
        xi, yi = metric.interpolate(x[left], y[left], x[right], y[right], fraction)

        out = pd.DataFrame(
            {
                ID_COL: individual_id,
                TIME_COL: grid,
                metric.x_col: xi,
                metric.y_col: yi,
            }
        )
        out.attrs[CRS_ATTR] = track.attrs.get(CRS_ATTR)
        return out

    def iter_resampled(
        self, tracks: Dict[str, pd.DataFrame], interval_s: float
    ) -> Iterator[Tuple[str, pd.DataFrame | TrackError]]:
        """Lazily resample one individual at a time.

        Yields ``(individual_id, regular_track)`` or ``(individual_id, error)``.
        """
        for individual_id, track in tracks.items():
            try:
                yield individual_id, self.resample_track(track, interval_s)
            except TrackError as exc:
                exc.individual_id = exc.individual_id or individual_id
                yield individual_id, exc

    def resample(self, tracks: Dict[str, pd.DataFrame], interval_s: float) -> BatchResult:
        result = BatchResult()
        for individual_id, item in self.iter_resampled(tracks, interval_s):
            if isinstance(item, TrackError):
                result.fail("resample", item)
            else:
                result.tracks[individual_id] = item
        logger.info(
            "Resampled %d tracks at %.1f s (%d regular fixes)",
            len(result.tracks),
            interval_s,
            sum(len(t) for t in result.tracks.values()),
        )
        return result
