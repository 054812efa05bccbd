from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import pandas as pd
import pyproj

from processing.exceptions import InvalidCRS
from processing.metrics import CRS_ATTR, crs_of, resolve_crs

logger = logging.getLogger(__name__)


class CoordinateProjector:
    """Project lon/lat fixes to planar x/y metres (and back) with pyproj."""

    def __init__(self, coords_cfg: Optional[Dict[str, Any]] = None):
        coords_cfg = coords_cfg or {}
        self.input_crs = coords_cfg.get("input_crs", "EPSG:4326")
        self.output_crs = coords_cfg.get("output_crs", "EPSG:3006")
        self.transform_on_load = coords_cfg.get("transform_on_load", True)
        if not resolve_crs(self.output_crs).is_projected:
            raise InvalidCRS(self.output_crs)
        self._forward = pyproj.Transformer.from_crs(self.input_crs, self.output_crs, always_xy=True)
        self._inverse = pyproj.Transformer.from_crs(self.output_crs, "EPSG:4326", always_xy=True)

    def add_projected_coords(self, data: pd.DataFrame) -> pd.DataFrame:
        """Return a copy with ``x``/``y`` added; lon/lat columns are kept.

        With ``transform_on_load`` off the frame is only tagged with the input CRS.
        """
        df = data.copy()
        source_crs = crs_of(data) or self.input_crs
        if not self.transform_on_load:
            df.attrs[CRS_ATTR] = source_crs
            return df
        if resolve_crs(source_crs) != resolve_crs(self.input_crs):
            raise InvalidCRS(source_crs)
        if not {"longitude", "latitude"} <= set(df.columns):
            raise ValueError("Projection needs 'longitude' and 'latitude' columns")
        x, y = self._forward.transform(df["longitude"].to_numpy(dtype=float), df["latitude"].to_numpy(dtype=float))
        df["x"] = x
        df["y"] = y
        df.attrs[CRS_ATTR] = self.output_crs
        logger.info("Projected %d fixes from %s to %s", len(df), self.input_crs, self.output_crs)
        return df

    def to_geographic(self, data: pd.DataFrame) -> pd.DataFrame:
        """Return a copy with WGS84 ``longitude``/``latitude`` derived from ``x``/``y``."""
        df = data.copy()
        crs = crs_of(data) or self.output_crs
        if resolve_crs(crs).is_geographic:
            return df
        transformer = self._inverse
        if resolve_crs(crs) != resolve_crs(self.output_crs):
            transformer = pyproj.Transformer.from_crs(crs, "EPSG:4326", always_xy=True)
        lon, lat = transformer.transform(df["x"].to_numpy(dtype=float), df["y"].to_numpy(dtype=float))
        df["longitude"] = lon
        df["latitude"] = lat
        return df
