from __future__ import annotations

from typing import List, Tuple

import pandas as pd


def validate_coordinates(df: pd.DataFrame, lat_col: str = "latitude", lon_col: str = "longitude") -> Tuple[bool, List[str]]:
    errs: List[str] = []
    for col in (lat_col, lon_col):
        if col not in df.columns:
            errs.append(f"Missing coordinate column: {col}")
    if errs:
        return False, errs
    lats = df[lat_col]
    lons = df[lon_col]
    invalid = lats.isna() | lons.isna() | (lats < -90) | (lats > 90) | (lons < -180) | (lons > 180)
    if invalid.any():
        errs.append(f"Found {int(invalid.sum())} invalid lat/lon values")
    return len(errs) == 0, errs


def validate_event_windows(df: pd.DataFrame, start_col: str = "start_time", end_col: str = "end_time") -> Tuple[bool, List[str]]:
    errs: List[str] = []
    for col in (start_col, end_col):
        if col not in df.columns:
            errs.append(f"Missing event time column: {col}")
    if errs:
        return False, errs
    reversed_ = df[start_col] > df[end_col]
    if reversed_.any():
        errs.append(f"Found {int(reversed_.sum())} events ending before they start")
    if df[start_col].isna().any() or df[end_col].isna().any():
        errs.append("Event time columns contain missing values")
    return len(errs) == 0, errs
