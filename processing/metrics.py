from __future__ import annotations

import logging
from typing import Any, Tuple

import numpy as np
import pandas as pd
import pyproj
from pyproj.exceptions import CRSError

from processing.exceptions import InvalidCRS

logger = logging.getLogger(__name__)

CRS_ATTR = "crs"


class PlanarMetric:
    """Euclidean distance and linear interpolation on projected metres."""

    x_col = "x"
    y_col = "y"

    def distance(self, x1, y1, x2, y2) -> np.ndarray:
        return np.hypot(np.asarray(x2, dtype=float) - x1, np.asarray(y2, dtype=float) - y1)

    def interpolate(self, x1, y1, x2, y2, fraction) -> Tuple[np.ndarray, np.ndarray]:
        x1 = np.asarray(x1, dtype=float)
        y1 = np.asarray(y1, dtype=float)
        f = np.asarray(fraction, dtype=float)
        return x1 + (np.asarray(x2, dtype=float) - x1) * f, y1 + (np.asarray(y2, dtype=float) - y1) * f


class GeodesicMetric:
    """Great-circle (ellipsoidal) distance and interpolation on lon/lat degrees."""

    x_col = "longitude"
    y_col = "latitude"

    def __init__(self, geod: pyproj.Geod | None = None):
        self.geod = geod or pyproj.Geod(ellps="WGS84")

    def distance(self, x1, y1, x2, y2) -> np.ndarray:
        x1 = np.asarray(x1, dtype=float)
        if x1.size == 0:
            return np.empty(0, dtype=float)
        _, _, dist = self.geod.inv(x1, np.asarray(y1, dtype=float), np.asarray(x2, dtype=float), np.asarray(y2, dtype=float))
        return np.asarray(dist, dtype=float)

    def interpolate(self, x1, y1, x2, y2, fraction) -> Tuple[np.ndarray, np.ndarray]:
        x1 = np.asarray(x1, dtype=float)
        y1 = np.asarray(y1, dtype=float)
        if x1.size == 0:
            return np.empty(0, dtype=float), np.empty(0, dtype=float)
        az, _, dist = self.geod.inv(x1, y1, np.asarray(x2, dtype=float), np.asarray(y2, dtype=float))
        lon, lat, _ = self.geod.fwd(x1, y1, az, np.asarray(dist, dtype=float) * np.asarray(fraction, dtype=float))
        return np.asarray(lon, dtype=float), np.asarray(lat, dtype=float)


def resolve_crs(crs: Any) -> pyproj.CRS:
    if crs is None:
        raise InvalidCRS(None)
    try:
        return pyproj.CRS.from_user_input(crs)
    except CRSError as exc:
        raise InvalidCRS(crs) from exc


def metric_for_crs(crs: Any) -> PlanarMetric | GeodesicMetric:
    """Pick the distance/interpolation pair matching a CRS.

    Geographic CRSs use geodesics on the CRS ellipsoid; projected CRSs must be
    in metres and use planar geometry.
    """
    resolved = resolve_crs(crs)
    if resolved.is_geographic:
        return GeodesicMetric(resolved.get_geod())
    if resolved.is_projected:
        units = {axis.unit_name.lower() for axis in resolved.axis_info}
        if units <= {"metre", "meter"}:
            return PlanarMetric()
    raise InvalidCRS(crs)


def crs_of(frame: pd.DataFrame) -> Any:
    return frame.attrs.get(CRS_ATTR)
