from __future__ import annotations

from typing import Any, Dict, Optional

import geopandas as gpd
import h3
import numpy as np
import pandas as pd
from shapely.geometry import Polygon, box

from data_loader.projection import CoordinateProjector
from processing.metrics import crs_of


class SpatialAggregator:
    """Summarise augmented fixes over square grid cells or H3 hexagons."""

    def __init__(self, projector: Optional[CoordinateProjector] = None):
        self.projector = projector or CoordinateProjector()

    def assign_grid_cells(self, data: pd.DataFrame, cell_size_m: float) -> pd.DataFrame:
        if cell_size_m <= 0:
            raise ValueError("cell_size_m must be positive")
        if not {"x", "y"} <= set(data.columns):
            raise ValueError("Grid rasterization needs projected 'x'/'y' columns")
        df = data.copy()
        df["cell_x"] = np.floor(df["x"] / cell_size_m) * cell_size_m
        df["cell_y"] = np.floor(df["y"] / cell_size_m) * cell_size_m
        return df

    def rasterize(self, data: pd.DataFrame, cell_size_m: float, agg_func: Dict[str, str]) -> pd.DataFrame:
        """Aggregate columns per grid cell; ``cell_x``/``cell_y`` are lower-left corners.

        NaN values (first fixes of each track) are skipped, zeros are kept.
        """
        df = self.assign_grid_cells(data, cell_size_m).dropna(subset=["cell_x", "cell_y"])
        grouped = df.groupby(["cell_x", "cell_y"])
        out = grouped.agg(agg_func)
        out["n_fixes"] = grouped.size()
        out = out.reset_index()
        out["centre_x"] = out["cell_x"] + cell_size_m / 2.0
        out["centre_y"] = out["cell_y"] + cell_size_m / 2.0
        out.attrs["cell_size_m"] = float(cell_size_m)
        out.attrs["crs"] = crs_of(data)
        return out

    def assign_hex_ids(self, data: pd.DataFrame, resolution: int) -> pd.DataFrame:
        df = data
        if not {"latitude", "longitude"} <= set(df.columns):
            df = self.projector.to_geographic(df)
        else:
            df = df.copy()
        df["h3_hex"] = [
            h3.latlng_to_cell(lat, lon, resolution) if pd.notna(lat) and pd.notna(lon) else None
            for lat, lon in zip(df["latitude"], df["longitude"])
        ]
        return df

    def aggregate_by_hex(self, data: pd.DataFrame, agg_func: Dict[str, str]) -> pd.DataFrame:
        if "h3_hex" not in data.columns:
            raise ValueError("Data must contain 'h3_hex' column. Call assign_hex_ids first.")
        grouped = data.dropna(subset=["h3_hex"]).groupby("h3_hex")
        agg_df = grouped.agg(agg_func)
        agg_df["n_fixes"] = grouped.size()
        return agg_df.reset_index()

    def _hex_to_polygon(self, hex_id: str) -> Polygon:
        boundary = h3.cell_to_boundary(hex_id)
        # h3 returns (lat, lon); shapely expects (lon, lat)
        return Polygon([(lon, lat) for lat, lon in boundary])

    def to_geodataframe(self, cells: pd.DataFrame, crs: Any = None) -> gpd.GeoDataFrame:
        """Attach polygon geometry to hex or grid summaries."""
        if "h3_hex" in cells.columns:
            polys = [self._hex_to_polygon(h) for h in cells["h3_hex"]]
            return gpd.GeoDataFrame(cells.copy(), geometry=polys, crs="EPSG:4326")
        size = cells.attrs.get("cell_size_m")
        if size is None:
            raise ValueError("Grid summary has no cell size; build it with rasterize()")
        polys = [box(x, y, x + size, y + size) for x, y in zip(cells["cell_x"], cells["cell_y"])]
        return gpd.GeoDataFrame(cells.copy(), geometry=polys, crs=crs or cells.attrs.get("crs"))
