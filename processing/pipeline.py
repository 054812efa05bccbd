from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from aggregation.interval_aggregator import IntervalAggregator
from processing.exceptions import InsufficientFixes
from processing.track_cleaner import SpeedFilter
from processing.track_resampler import TrackResampler
from processing.tracks import BatchResult, TrackFailure

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    augmented: pd.DataFrame
    interval_s: Optional[float]
    cleaned: BatchResult
    regular: BatchResult
    failures: List[TrackFailure] = field(default_factory=list)

    @property
    def failed_individuals(self) -> List[str]:
        return sorted({f.individual_id for f in self.failures})


class TrackPipeline:
    """Clean, resample and augment every individual's track in one pass.

    Each stage isolates failures per individual, so one bad track is reported
    in ``failures`` while the others carry on.
    """

    def __init__(
        self,
        cleaner: Optional[SpeedFilter] = None,
        resampler: Optional[TrackResampler] = None,
        aggregator: Optional[IntervalAggregator] = None,
        percentile: float = 90,
        round_to_s: Optional[float] = None,
        interval_s: Optional[float] = None,
    ):
        self.cleaner = cleaner or SpeedFilter()
        self.resampler = resampler or TrackResampler()
        self.aggregator = aggregator or IntervalAggregator()
        self.percentile = percentile
        self.round_to_s = round_to_s
        self.interval_s = interval_s

    @classmethod
    def from_settings(cls, settings: Dict[str, Any], interval_s: Optional[float] = None) -> "TrackPipeline":
        cleaning = settings.get("cleaning", {})
        resampling = settings.get("resampling", {})
        return cls(
            cleaner=SpeedFilter(
                max_speed=cleaning.get("max_speed", 2.5),
                max_iterations=cleaning.get("max_iterations", 100),
            ),
            aggregator=IntervalAggregator.from_config(settings.get("aggregation", {}).get("fields")),
            percentile=resampling.get("percentile", 90),
            round_to_s=resampling.get("round_to_s"),
            interval_s=interval_s,
        )

    def resolve_interval(self, tracks: Dict[str, pd.DataFrame]) -> Optional[float]:
        if self.interval_s is not None:
            return float(self.interval_s)
        if self.resampler.observed_intervals(tracks).size == 0:
            return None
        return self.resampler.choose_interval(tracks, self.percentile, self.round_to_s)

    def run(self, fixes: pd.DataFrame, events: pd.DataFrame, individuals: Optional[Iterable[str]] = None) -> PipelineResult:
        cleaned = self.cleaner.clean(fixes, individuals)
        interval_s = self.resolve_interval(cleaned.tracks)

        if interval_s is None:
            regular = BatchResult()
            for individual_id, track in cleaned.tracks.items():
                regular.fail("resample", InsufficientFixes(individual_id, len(track)))
        else:
            regular = self.resampler.resample(cleaned.tracks, interval_s)

        augmented = self.aggregator.aggregate(regular.tracks, events)
        failures = [*cleaned.failures, *regular.failures, *augmented.failures]
        if failures:
            logger.warning("%d individual-level failures: %s", len(failures), ", ".join(str(f) for f in failures))
        logger.info("Pipeline produced %d augmented tracks", len(augmented.tracks))
        return PipelineResult(
            augmented=augmented.to_frame(),
            interval_s=interval_s,
            cleaned=cleaned,
            regular=regular,
            failures=failures,
        )
