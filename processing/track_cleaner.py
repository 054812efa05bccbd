from __future__ import annotations

import logging
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from processing.exceptions import InvalidCRS, NonConvergentTrack
from processing.metrics import CRS_ATTR, GeodesicMetric, PlanarMetric, crs_of, metric_for_crs
from processing.tracks import ID_COL, TIME_COL, BatchResult, partition_by_individual

logger = logging.getLogger(__name__)

Metric = PlanarMetric | GeodesicMetric


class SpeedFilter:
    """Iteratively drop fixes that imply an implausible travel speed.

    Removing a fix changes the step into its successor, so metrics are
    recomputed after each rejection pass until no step exceeds ``max_speed``.
    """

    def __init__(self, max_speed: float = 2.5, max_iterations: int = 100, metric: Optional[Metric] = None):
        if max_speed <= 0:
            raise ValueError("max_speed must be positive")
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.max_speed = float(max_speed)
        self.max_iterations = int(max_iterations)
        self.metric = metric

    def _metric_for(self, fixes: pd.DataFrame) -> Metric:
        if self.metric is not None:
            return self.metric
        return metric_for_crs(crs_of(fixes))

    def compute_metrics(self, track: pd.DataFrame, metric: Optional[Metric] = None) -> pd.DataFrame:
        """Add ``distance`` (m), ``interval`` (s) and ``speed`` (m/s) to a single track.

        The first fix has no predecessor and gets NaN in all three.
        """
        metric = metric or self._metric_for(track)
        out = track.copy()
        n = len(out)
        distance = np.full(n, np.nan)
        if n > 1:
            x = out[metric.x_col].to_numpy(dtype=float)
            y = out[metric.y_col].to_numpy(dtype=float)
            distance[1:] = metric.distance(x[:-1], y[:-1], x[1:], y[1:])
        interval = pd.to_datetime(out[TIME_COL]).diff().dt.total_seconds().to_numpy(dtype=float)
        out["distance"] = distance
        out["interval"] = interval
        out["speed"] = distance / interval
        return out

    def clean_track(self, track: pd.DataFrame, metric: Optional[Metric] = None) -> pd.DataFrame:
        metric = metric or self._metric_for(track)
        individual_id = str(track[ID_COL].iloc[0]) if len(track) else "?"
        current = track
        for iteration in range(1, self.max_iterations + 1):
            measured = self.compute_metrics(current, metric)
            if len(measured) < 2:
                return measured
            too_fast = (measured["speed"] > self.max_speed).to_numpy()
            if not too_fast.any():
                if iteration > 1:
                    logger.debug("%s: converged after %d passes", individual_id, iteration)
                return measured
            logger.debug("%s: pass %d removes %d fixes", individual_id, iteration, int(too_fast.sum()))
            current = current[~too_fast].reset_index(drop=True)
        raise NonConvergentTrack(individual_id, self.max_iterations)

    def clean(self, fixes: pd.DataFrame, individuals: Optional[Iterable[str]] = None) -> BatchResult:
        """Clean every individual's track independently.

        A missing or unusable CRS fails every individual in the batch; other
        errors only fail the individual they occur in.
        """
        try:
            metric = self._metric_for(fixes)
        except InvalidCRS as exc:
            result = BatchResult()
            ids = list(individuals or []) or [str(i) for i in fixes[ID_COL].dropna().unique()]
            for individual_id in ids:
                result.fail("clean", InvalidCRS(exc.crs, str(individual_id)))
            return result

        partitioned = partition_by_individual(fixes, [metric.x_col, metric.y_col], individuals)
        result = BatchResult(failures=list(partitioned.failures))
        removed = 0
        for individual_id, track in partitioned.tracks.items():
            try:
                cleaned = self.clean_track(track, metric)
            except NonConvergentTrack as exc:
                result.fail("clean", exc)
                continue
            cleaned.attrs[CRS_ATTR] = track.attrs.get(CRS_ATTR)
            removed += len(track) - len(cleaned)
            result.tracks[individual_id] = cleaned
        logger.info(
            "Speed filter (max %.2f m/s): removed %d fixes across %d individuals",
            self.max_speed,
            removed,
            len(result.tracks),
        )
        return result
