import pandas as pd
import pytest

from conftest import make_events, make_fixes, seconds
from processing.exceptions import InsufficientFixes, MismatchedIndividual
from processing.pipeline import TrackPipeline
from utils.io_helpers import DEFAULT_SETTINGS


def test_end_to_end_with_partial_failures():
    fixes = make_fixes(
        [
            ("A", 0, 0, 0),
            ("A", 600, 0, 100),
            ("A", 700, 0, 1000),  # spike, removed by the speed filter
            ("A", 1200, 0, 200),
            ("B", 0, 500, 500),
        ]
    )
    events = make_events([("A", 100, 200, 50), ("A", 550, 650, 80), ("C", 0, 10, 5)])

    result = TrackPipeline(interval_s=600).run(fixes, events)

    out = result.augmented
    assert seconds(out["timestamp"]) == [0, 600, 1200]
    assert out["y"].tolist() == pytest.approx([0, 100, 200])
    assert pd.isna(out["mean_magnitude"].iloc[0])
    assert out["mean_magnitude"].iloc[1] == pytest.approx(50)
    assert out["dive_duration_s"].iloc[1] == pytest.approx(100)
    assert out["mean_magnitude"].iloc[2] == 0

    kinds = {f.individual_id: type(f.error) for f in result.failures}
    assert kinds == {"B": InsufficientFixes, "C": MismatchedIndividual}
    assert result.failed_individuals == ["B", "C"]


def test_interval_is_chosen_from_cleaned_gaps():
    fixes = make_fixes([("A", s, 0, s / 10) for s in (0, 300, 600, 1200, 1800, 2400)])
    events = make_events([])
    pipeline = TrackPipeline(percentile=90, round_to_s=60)

    result = pipeline.run(fixes, events)

    assert result.interval_s == pytest.approx(600)
    assert seconds(result.augmented["timestamp"]) == [0, 600, 1200, 1800, 2400]
    assert result.augmented["event_count"].tolist()[1:] == [0, 0, 0, 0]


def test_no_track_with_two_fixes():
    fixes = make_fixes([("A", 0, 0, 0), ("B", 0, 0, 0)])
    result = TrackPipeline().run(fixes, make_events([]))

    assert result.interval_s is None
    assert result.augmented.empty
    assert {f.individual_id for f in result.failures} == {"A", "B"}


def test_from_settings_reads_sections():
    settings = {**DEFAULT_SETTINGS, "cleaning": {"max_speed": 1.5, "max_iterations": 7}}
    pipeline = TrackPipeline.from_settings(settings, interval_s=300)

    assert pipeline.cleaner.max_speed == 1.5
    assert pipeline.cleaner.max_iterations == 7
    assert pipeline.interval_s == 300
    assert [f.name for f in pipeline.aggregator.fields] == ["mean_magnitude", "dive_duration_s", "event_count"]


def test_tz_aware_fixes_with_naive_events():
    fixes = make_fixes([("A", 0, 0, 0), ("A", 600, 0, 100), ("B", 0, 0, 0), ("B", 600, 0, 50)])
    fixes["timestamp"] = fixes["timestamp"].dt.tz_localize("UTC")
    events = make_events([("A", 100, 200, 50)])

    result = TrackPipeline(interval_s=600).run(fixes, events)

    assert result.failures == []
    out = result.augmented
    assert len(out) == 4
    a = out[out["individual_id"] == "A"]
    assert a["mean_magnitude"].iloc[1] == pytest.approx(50)
    b = out[out["individual_id"] == "B"]
    assert b["event_count"].iloc[1] == 0
