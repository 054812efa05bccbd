import numpy as np
import pandas as pd
import pytest

from aggregation.interval_aggregator import AggregationField, IntervalAggregator
from conftest import make_events, make_fixes
from processing.exceptions import MismatchedIndividual


def test_contained_event_counts_and_straddling_event_is_dropped(regular_track):
    events = make_events([("A", 100, 200, 50), ("A", 550, 650, 80)])
    out = IntervalAggregator().aggregate_track(regular_track, events)

    row600 = out.iloc[1]
    assert row600["mean_magnitude"] == pytest.approx(50)
    assert row600["dive_duration_s"] == pytest.approx(100)
    assert row600["event_count"] == 1

    row1200 = out.iloc[2]
    assert row1200["mean_magnitude"] == 0
    assert row1200["dive_duration_s"] == 0
    assert row1200["event_count"] == 0


def test_first_fix_is_not_applicable_not_zero(regular_track):
    out = IntervalAggregator().aggregate_track(regular_track, make_events([("A", 10, 20, 5)]))

    assert out[["mean_magnitude", "dive_duration_s", "event_count", "interval_s"]].iloc[0].isna().all()
    assert out["interval_s"].iloc[1:].tolist() == [600.0, 600.0]


def test_interval_is_open_on_the_left_and_closed_on_the_right(regular_track):
    events = make_events(
        [
            ("A", 500, 600, 10),  # ends exactly on the fix: inside (0, 600]
            ("A", 600, 700, 20),  # starts on the fix, so starts in (0, 600] and ends in (600, 1200]
            ("A", 601, 700, 30),  # inside (600, 1200]
            ("A", -50, 0, 40),  # before the track: no interval
            ("A", 1200, 1300, 60),  # after the track
        ]
    )
    out = IntervalAggregator().aggregate_track(regular_track, events)

    assert out["event_count"].tolist()[1:] == [1, 1]
    assert out["mean_magnitude"].tolist()[1:] == [10, 30]


def test_mean_over_several_events(regular_track):
    events = make_events([("A", 700, 760, 20), ("A", 800, 900, 40), ("A", 1000, 1100, 90)])
    out = IntervalAggregator().aggregate_track(regular_track, events)

    assert out["mean_magnitude"].iloc[2] == pytest.approx(50)
    assert out["dive_duration_s"].iloc[2] == pytest.approx(260)
    assert out["event_count"].iloc[2] == 3


def test_duration_sum_never_exceeds_interval_length():
    track = make_fixes([("A", s, 0, 0) for s in range(0, 6001, 600)])
    rng = np.random.default_rng(7)
    starts = np.sort(rng.choice(np.arange(0, 6000, 20), size=80, replace=False))
    rows = [("A", int(s), int(s) + int(rng.integers(1, 20)), float(rng.uniform(5, 300))) for s in starts]
    out = IntervalAggregator().aggregate_track(track, make_events(rows))

    defined = out.iloc[1:]
    assert (defined["dive_duration_s"] <= defined["interval_s"]).all()
    assert not defined[["mean_magnitude", "dive_duration_s", "event_count"]].isna().any().any()


def test_pluggable_fields(regular_track):
    fields = [
        AggregationField("max_depth", "magnitude", "max"),
        AggregationField("depth_range", "magnitude", lambda s: s.max() - s.min()),
        AggregationField("n_dives", "magnitude", "count"),
    ]
    events = make_events([("A", 100, 200, 50), ("A", 300, 400, 120)])
    out = IntervalAggregator(fields).aggregate_track(regular_track, events)

    assert out["max_depth"].iloc[1] == 120
    assert out["depth_range"].iloc[1] == 70
    assert out["n_dives"].tolist()[1:] == [2, 0]


def test_from_config_and_validation():
    agg = IntervalAggregator.from_config([{"name": "total", "source": "duration", "func": "sum"}])
    assert [f.name for f in agg.fields] == ["total"]
    assert [f.name for f in IntervalAggregator.from_config(None).fields] == [
        "mean_magnitude",
        "dive_duration_s",
        "event_count",
    ]
    with pytest.raises(ValueError):
        AggregationField("bad", "magnitude", "mode")
    with pytest.raises(ValueError):
        IntervalAggregator([AggregationField("a"), AggregationField("a")])


def test_aggregate_reports_mismatched_individual_and_continues(regular_track):
    tracks = {"A": regular_track, "B": make_fixes([("B", 0, 0, 0), ("B", 600, 0, 10)])}
    events = make_events([("A", 100, 200, 50), ("Z", 100, 200, 70)])
    result = IntervalAggregator().aggregate(tracks, events)

    assert set(result.tracks) == {"A", "B"}
    assert result.tracks["A"]["mean_magnitude"].iloc[1] == 50
    assert result.tracks["B"]["event_count"].tolist()[1:] == [0]
    assert len(result.failures) == 1
    assert isinstance(result.failures[0].error, MismatchedIndividual)
    assert result.failures[0].individual_id == "Z"

    frame = result.to_frame()
    assert len(frame) == 5
    assert frame.attrs["crs"] == "EPSG:3006"


def test_reversed_events_are_dropped(regular_track):
    events = make_events([("A", 200, 100, 50)])
    result = IntervalAggregator().aggregate({"A": regular_track}, events)

    assert result.tracks["A"]["event_count"].tolist()[1:] == [0, 0]


def test_missing_event_columns_raise(regular_track):
    with pytest.raises(ValueError):
        IntervalAggregator().aggregate({"A": regular_track}, pd.DataFrame({"individual_id": ["A"]}))


def test_event_times_follow_the_track_timezone(regular_track):
    events = make_events([("A", 100, 200, 50), ("A", 700, 800, 70)])

    aware_track = regular_track.assign(timestamp=regular_track["timestamp"].dt.tz_localize("UTC"))
    out = IntervalAggregator().aggregate_track(aware_track, events)
    assert out["mean_magnitude"].tolist()[1:] == [50, 70]

    local = events.assign(
        start_time=events["start_time"].dt.tz_localize("UTC").dt.tz_convert("Europe/Stockholm"),
        end_time=events["end_time"].dt.tz_localize("UTC").dt.tz_convert("Europe/Stockholm"),
    )
    out = IntervalAggregator().aggregate_track(regular_track, local)
    assert out["mean_magnitude"].tolist()[1:] == [50, 70]


def test_events_without_magnitude_are_dropped(regular_track):
    events = make_events([("A", 100, 200, 50), ("A", 700, 800, 0)])
    events.loc[1, "magnitude"] = np.nan
    out = IntervalAggregator().aggregate_track(regular_track, events)

    assert out["event_count"].tolist()[1:] == [1, 0]
    assert out["mean_magnitude"].tolist()[1:] == [50, 0]
    assert out["dive_duration_s"].tolist()[1:] == [100, 0]
