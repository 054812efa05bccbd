import geopandas as gpd
import numpy as np
import pandas as pd
import pytest

from aggregation.spatial_aggregator import SpatialAggregator
from processing.metrics import CRS_ATTR


@pytest.fixture
def augmented():
    df = pd.DataFrame(
        {
            "individual_id": ["A", "A", "A", "B", "B"],
            "x": [100.0, 900.0, 1500.0, 200.0, 1999.0],
            "y": [100.0, 200.0, 300.0, 50.0, 10.0],
            "mean_magnitude": [np.nan, 40.0, 0.0, np.nan, 20.0],
        }
    )
    df.attrs[CRS_ATTR] = "EPSG:3006"
    return df


def test_rasterize_grid_skips_not_applicable_and_keeps_zero(augmented):
    cells = SpatialAggregator().rasterize(augmented, 1000, {"mean_magnitude": "mean"})
    cells = cells.set_index(["cell_x", "cell_y"])

    assert cells.loc[(0.0, 0.0), "mean_magnitude"] == pytest.approx(40.0)
    assert cells.loc[(0.0, 0.0), "n_fixes"] == 3
    assert cells.loc[(1000.0, 0.0), "mean_magnitude"] == pytest.approx(10.0)
    assert cells.loc[(1000.0, 0.0), "centre_x"] == 1500.0


def test_grid_geodataframe(augmented):
    spatial = SpatialAggregator()
    cells = spatial.rasterize(augmented, 1000, {"mean_magnitude": "mean"})
    gdf = spatial.to_geodataframe(cells)

    assert isinstance(gdf, gpd.GeoDataFrame)
    assert gdf.crs.to_epsg() == 3006
    assert gdf.geometry.area.tolist() == pytest.approx([1e6] * len(gdf))


def test_rasterize_needs_projected_columns():
    with pytest.raises(ValueError):
        SpatialAggregator().rasterize(pd.DataFrame({"longitude": [1.0], "latitude": [2.0]}), 1000, {})
    with pytest.raises(ValueError):
        SpatialAggregator().assign_grid_cells(pd.DataFrame({"x": [1.0], "y": [2.0]}), 0)


def test_hex_binning_from_lonlat():
    df = pd.DataFrame(
        {
            "longitude": [18.0, 18.0001, 20.0],
            "latitude": [59.0, 59.0001, 60.0],
            "dive_duration_s": [100.0, 300.0, 50.0],
        }
    )
    spatial = SpatialAggregator()
    hexed = spatial.assign_hex_ids(df, 6)
    assert hexed["h3_hex"].iloc[0] == hexed["h3_hex"].iloc[1]

    agg = spatial.aggregate_by_hex(hexed, {"dive_duration_s": "mean"})
    assert len(agg) == 2
    assert sorted(agg["dive_duration_s"].tolist()) == [50.0, 200.0]

    gdf = spatial.to_geodataframe(agg)
    assert gdf.crs.to_epsg() == 4326
    assert gdf.geometry.is_valid.all()


def test_hex_binning_projects_xy_back(augmented):
    hexed = SpatialAggregator().assign_hex_ids(augmented.assign(x=[674000.0] * 5, y=[6541000.0] * 5), 5)
    assert hexed["h3_hex"].nunique() == 1
    assert hexed["latitude"].between(58, 60).all()


def test_aggregate_by_hex_requires_ids():
    with pytest.raises(ValueError):
        SpatialAggregator().aggregate_by_hex(pd.DataFrame({"a": [1]}), {"a": "mean"})
