import os
import sys

import pandas as pd
import pytest

# Ensure project root is importable
ROOT = os.path.dirname(os.path.dirname(__file__))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from processing.metrics import CRS_ATTR  # noqa: E402

T0 = pd.Timestamp("2021-03-01 00:00:00")


def at(seconds):
    return T0 + pd.to_timedelta(seconds, unit="s")


def make_fixes(rows, crs="EPSG:3006"):
    """rows: (individual_id, seconds, x, y); geographic CRSs get lon/lat columns."""
    geographic = crs == "EPSG:4326"
    xcol, ycol = ("longitude", "latitude") if geographic else ("x", "y")
    df = pd.DataFrame(
        {
            "individual_id": [r[0] for r in rows],
            "timestamp": [at(r[1]) for r in rows],
            xcol: [float(r[2]) for r in rows],
            ycol: [float(r[3]) for r in rows],
        }
    )
    df.attrs[CRS_ATTR] = crs
    return df


def make_events(rows):
    """rows: (individual_id, start_s, end_s, magnitude)."""
    return pd.DataFrame(
        {
            "individual_id": [r[0] for r in rows],
            "start_time": [at(r[1]) for r in rows],
            "end_time": [at(r[2]) for r in rows],
            "magnitude": [float(r[3]) for r in rows],
        }
    )


def seconds(series):
    return (pd.to_datetime(series) - T0).dt.total_seconds().tolist()


@pytest.fixture
def regular_track():
    """Individual A on a 600 s grid from 0 to 1200 s."""
    return make_fixes([("A", 0, 0, 0), ("A", 600, 0, 100), ("A", 1200, 0, 200)])
