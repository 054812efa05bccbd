from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import dask.dataframe as dd
import pandas as pd
from pandas.api import types as ptypes
from rich.progress import track

from processing.metrics import CRS_ATTR
from processing.tracks import ID_COL, TIME_COL

logger = logging.getLogger(__name__)

# Accepted header spellings (lower-case) for each canonical column
FIX_COLUMNS: Dict[str, Sequence[str]] = {
    ID_COL: ("individual_id", "id", "ref", "tag", "tag_id", "animal_id", "ptt"),
    TIME_COL: ("timestamp", "time", "datetime", "date", "d_date"),
    "latitude": ("latitude", "lat"),
    "longitude": ("longitude", "lon", "long", "lng"),
    "x": ("x", "easting"),
    "y": ("y", "northing"),
}

EVENT_COLUMNS: Dict[str, Sequence[str]] = {
    ID_COL: FIX_COLUMNS[ID_COL],
    "start_time": ("start_time", "start", "ds_date", "dive_start"),
    "end_time": ("end_time", "end", "de_date", "dive_end"),
    "duration": ("duration", "dive_dur", "dur"),
    "magnitude": ("magnitude", "max_dep", "max_depth", "depth"),
}


def _separator(path: Path) -> str:
    return "\t" if path.suffix.lower() in {".tsv", ".txt"} else ","


def resolve_columns(columns: Sequence[str], candidates: Dict[str, Sequence[str]]) -> Dict[str, str]:
    """Map actual header names to canonical names, case-insensitively."""
    col_lut = {c.lower().strip(): c for c in columns}
    mapping: Dict[str, str] = {}
    for canonical, options in candidates.items():
        key = next((k for k in options if k in col_lut), None)
        if key is not None and col_lut[key] not in mapping:
            mapping[col_lut[key]] = canonical
    return mapping


def parse_times(values: pd.Series) -> pd.Series:
    """ISO-8601 strings or epoch seconds to naive UTC datetimes; unparseable values become NaT.

    Offsets (``Z``, ``+02:00``) are converted to UTC and dropped, so fix and
    event tables parsed here always compare.
    """
    if ptypes.is_datetime64_any_dtype(values):
        if isinstance(values.dtype, pd.DatetimeTZDtype):
            return values.dt.tz_convert(None)
        return values
    if ptypes.is_numeric_dtype(values):
        return pd.to_datetime(values, unit="s", errors="coerce")
    numeric = pd.to_numeric(values, errors="coerce")
    if values.notna().any() and numeric.notna().sum() == values.notna().sum():
        return pd.to_datetime(numeric, unit="s", errors="coerce")
    return pd.to_datetime(values, errors="coerce", utc=True).dt.tz_convert(None)


class BiologgingDataLoader:
    def __init__(self, column_map: Optional[Dict[str, str]] = None):
        self.column_map = column_map or {}

    def get_file_list(self, root_dir: Path, pattern: str) -> List[Path]:
        files = sorted(Path(root_dir).glob(pattern))
        if not files:
            logger.warning("No files found at %s with pattern %s", root_dir, pattern)
        return files

    def read_tables(self, file_paths: List[Path], lazy: bool = False, blocksize: str | None = "64MB") -> pd.DataFrame:
        if not file_paths:
            raise ValueError("No input files provided")
        file_paths = [Path(p) for p in file_paths]
        for p in file_paths:
            if not p.exists():
                raise FileNotFoundError(f"Input file not found: {p}")
        sep = _separator(file_paths[0])

        if lazy:
            logger.info("Loading %d files with Dask", len(file_paths))
            ddf = dd.read_csv([str(p) for p in file_paths], sep=sep, blocksize=blocksize, assume_missing=True, dtype="object")
            df = ddf.compute()
        else:
            logger.info("Loading %d files eagerly with Pandas", len(file_paths))
            parts = [pd.read_csv(p, sep=sep) for p in track(file_paths, description="Reading tables")]
            df = pd.concat(parts, ignore_index=True)
        if self.column_map:
            df = df.rename(columns=self.column_map)
        return df.reset_index(drop=True)

    def _canonicalize(self, raw: pd.DataFrame, candidates: Dict[str, Sequence[str]]) -> pd.DataFrame:
        mapping = resolve_columns(list(raw.columns), candidates)
        return raw.rename(columns=mapping)[list(mapping.values())].copy()

    def load_fixes(self, file_paths: List[Path], crs: Any = "EPSG:4326", lazy: bool = False) -> pd.DataFrame:
        """Load GPS fixes with canonical columns and the CRS tagged in ``attrs``."""
        raw = self.read_tables(file_paths, lazy=lazy)
        df = self._canonicalize(raw, FIX_COLUMNS)
        has_lonlat = {"longitude", "latitude"} <= set(df.columns)
        has_xy = {"x", "y"} <= set(df.columns)
        if ID_COL not in df.columns or TIME_COL not in df.columns:
            raise ValueError(f"Fix table needs individual id and time columns. Columns: {list(raw.columns)}")
        if not (has_lonlat or has_xy):
            raise ValueError(f"Fix table missing latitude/longitude (or x/y) columns. Columns: {list(raw.columns)}")

        df[ID_COL] = df[ID_COL].astype(str)
        df[TIME_COL] = parse_times(df[TIME_COL])
        for col in ("longitude", "latitude", "x", "y"):
            if col in df.columns:
                df[col] = pd.to_numeric(df[col], errors="coerce")
        before = len(df)
        df = df.dropna(subset=[TIME_COL]).reset_index(drop=True)
        if len(df) < before:
            logger.warning("Dropped %d fixes with unparseable timestamps", before - len(df))
        df.attrs[CRS_ATTR] = crs
        logger.info("Loaded %d fixes for %d individuals", len(df), df[ID_COL].nunique())
        return df

    def load_events(self, file_paths: List[Path], lazy: bool = False) -> pd.DataFrame:
        """Load dive events; a missing start column is derived from end minus duration."""
        raw = self.read_tables(file_paths, lazy=lazy)
        df = self._canonicalize(raw, EVENT_COLUMNS)
        if ID_COL not in df.columns or "magnitude" not in df.columns:
            raise ValueError(f"Event table needs individual id and magnitude columns. Columns: {list(raw.columns)}")

        df[ID_COL] = df[ID_COL].astype(str)
        df["magnitude"] = pd.to_numeric(df["magnitude"], errors="coerce")
        for col in ("start_time", "end_time"):
            if col in df.columns:
                df[col] = parse_times(df[col])
        if "duration" in df.columns:
            dur = pd.to_timedelta(pd.to_numeric(df["duration"], errors="coerce"), unit="s")
            if "start_time" not in df.columns and "end_time" in df.columns:
                df["start_time"] = df["end_time"] - dur
            elif "end_time" not in df.columns and "start_time" in df.columns:
                df["end_time"] = df["start_time"] + dur
            df = df.drop(columns=["duration"])
        if "start_time" not in df.columns or "end_time" not in df.columns:
            raise ValueError(f"Event table needs start/end times (or one of them plus a duration). Columns: {list(raw.columns)}")

        before = len(df)
        df = df.dropna(subset=["start_time", "end_time"])
        reversed_ = df["start_time"] > df["end_time"]
        df = df[~reversed_].reset_index(drop=True)
        if len(df) < before:
            logger.warning("Dropped %d events with missing or reversed times", before - len(df))
        logger.info("Loaded %d events for %d individuals", len(df), df[ID_COL].nunique())
        return df[[ID_COL, "start_time", "end_time", "magnitude"]]
