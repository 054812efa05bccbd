import pandas as pd
import pytest

from conftest import make_fixes
from data_loader.projection import CoordinateProjector
from processing.exceptions import InvalidCRS
from processing.metrics import CRS_ATTR, GeodesicMetric, PlanarMetric, metric_for_crs


def _lonlat():
    df = pd.DataFrame({"individual_id": ["A", "A"], "longitude": [18.0, 18.01], "latitude": [59.0, 59.0]})
    df.attrs[CRS_ATTR] = "EPSG:4326"
    return df


def test_projection_adds_xy_and_keeps_lonlat():
    projector = CoordinateProjector({"input_crs": "EPSG:4326", "output_crs": "EPSG:3006"})
    out = projector.add_projected_coords(_lonlat())

    assert {"x", "y", "longitude", "latitude"} <= set(out.columns)
    assert out.attrs[CRS_ATTR] == "EPSG:3006"
    # 0.01 degrees of longitude at 59N is roughly 573 m
    assert out["x"].iloc[1] - out["x"].iloc[0] == pytest.approx(573, abs=5)
    assert "x" not in _lonlat().columns


def test_round_trip_to_geographic():
    projector = CoordinateProjector()
    projected = projector.add_projected_coords(_lonlat()).drop(columns=["longitude", "latitude"])
    projected.attrs[CRS_ATTR] = "EPSG:3006"
    back = projector.to_geographic(projected)

    assert back["longitude"].tolist() == pytest.approx([18.0, 18.01], abs=1e-7)
    assert back["latitude"].tolist() == pytest.approx([59.0, 59.0], abs=1e-7)


def test_transform_disabled_only_tags_crs():
    projector = CoordinateProjector({"transform_on_load": False})
    out = projector.add_projected_coords(_lonlat())

    assert "x" not in out.columns
    assert out.attrs[CRS_ATTR] == "EPSG:4326"


def test_output_crs_must_be_projected():
    with pytest.raises(InvalidCRS):
        CoordinateProjector({"output_crs": "EPSG:4326"})
    with pytest.raises(InvalidCRS):
        CoordinateProjector({"output_crs": "not-a-crs"})


def test_source_crs_mismatch_is_rejected():
    df = _lonlat()
    df.attrs[CRS_ATTR] = "EPSG:3857"
    with pytest.raises(InvalidCRS):
        CoordinateProjector().add_projected_coords(df)


def test_metric_for_crs():
    assert isinstance(metric_for_crs("EPSG:3006"), PlanarMetric)
    assert isinstance(metric_for_crs("EPSG:4326"), GeodesicMetric)
    with pytest.raises(InvalidCRS):
        metric_for_crs(None)
    with pytest.raises(InvalidCRS):
        metric_for_crs("definitely not a crs")


def test_planar_metric_distance_and_interpolation():
    metric = PlanarMetric()
    assert metric.distance([0.0], [0.0], [3.0], [4.0]).tolist() == [5.0]
    x, y = metric.interpolate([0.0], [0.0], [10.0], [20.0], [0.25])
    assert x.tolist() == [2.5]
    assert y.tolist() == [5.0]


def test_geodesic_metric_handles_empty_input():
    metric = GeodesicMetric()
    assert metric.distance([], [], [], []).size == 0
    x, y = metric.interpolate([], [], [], [], [])
    assert x.size == 0 and y.size == 0


def test_fixture_frames_carry_crs():
    assert make_fixes([("A", 0, 0, 0)]).attrs[CRS_ATTR] == "EPSG:3006"
