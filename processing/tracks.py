from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from processing.exceptions import EmptyTrack, TrackError
from processing.metrics import CRS_ATTR

logger = logging.getLogger(__name__)

ID_COL = "individual_id"
TIME_COL = "timestamp"


@dataclass
class TrackFailure:
    individual_id: str
    stage: str
    error: TrackError

    @property
    def kind(self) -> str:
        return type(self.error).__name__

    def __str__(self) -> str:
        return f"[{self.stage}] {self.individual_id}: {self.kind}: {self.error}"


@dataclass
class BatchResult:
    """Per-individual tracks that survived a stage, plus the ones that failed."""

    tracks: Dict[str, pd.DataFrame] = field(default_factory=dict)
    failures: List[TrackFailure] = field(default_factory=list)

    def fail(self, stage: str, error: TrackError) -> None:
        self.failures.append(TrackFailure(str(error.individual_id), stage, error))
        logger.warning("%s failed for %s: %s", stage, error.individual_id, error)

    def to_frame(self) -> pd.DataFrame:
        if not self.tracks:
            return pd.DataFrame(columns=[ID_COL, TIME_COL])
        frames = list(self.tracks.values())
        out = pd.concat(frames, ignore_index=True)
        out.attrs[CRS_ATTR] = frames[0].attrs.get(CRS_ATTR)
        return out


def partition_by_individual(
    fixes: pd.DataFrame,
    coord_cols: Iterable[str],
    individuals: Optional[Iterable[str]] = None,
) -> BatchResult:
    """Split a multi-individual fix table into one sorted track per individual.

    Rows without a timestamp or finite coordinates are dropped; repeated
    timestamps within a track keep the first fix. Expected individuals
    (``individuals``, or every id present in the input) that end up with no
    fixes are reported as ``EmptyTrack``.
    """
    coord_cols = list(coord_cols)
    missing = [c for c in [ID_COL, TIME_COL, *coord_cols] if c not in fixes.columns]
    if missing:
        raise ValueError(f"Fix table is missing columns: {missing}")

    crs = fixes.attrs.get(CRS_ATTR)
    df = fixes.dropna(subset=[ID_COL, TIME_COL, *coord_cols])
    df = df[np.isfinite(df[coord_cols].to_numpy(dtype=float)).all(axis=1)]
    dropped = len(fixes) - len(df)
    if dropped:
        logger.info("Dropped %d fixes with missing time or coordinates", dropped)
    df = df.assign(**{ID_COL: df[ID_COL].astype(str)})

    result = BatchResult()
    for individual_id, group in df.groupby(ID_COL, sort=False):
        track = group.sort_values(TIME_COL, kind="mergesort")
        dupes = track[TIME_COL].duplicated(keep="first")
        if dupes.any():
            logger.info("%s: dropped %d fixes with duplicate timestamps", individual_id, int(dupes.sum()))
            track = track[~dupes]
        track = track.reset_index(drop=True)
        track.attrs[CRS_ATTR] = crs
        result.tracks[str(individual_id)] = track

    if individuals is None:
        individuals = fixes[ID_COL].dropna().astype(str).unique()
    for individual_id in individuals:
        if str(individual_id) not in result.tracks:
            result.fail("partition", EmptyTrack(str(individual_id)))
    return result
