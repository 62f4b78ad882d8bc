import math

import numpy as np
import pytest

from walkthrough_tracks.errors import ConfigurationError, PathNotFound
from walkthrough_tracks.ingestion import Trajectory
from walkthrough_tracks.navigation import StraightLinePathProvider
from walkthrough_tracks.statistics import (
    METRIC_COLUMNS,
    NOT_COMPUTED,
    EndpointPolicy,
    summarize_trajectories,
    summary_table,
)


class NoPathProvider:
    def find_path(self, start, end, snap_tolerance):
        raise PathNotFound("no navigation data")


def _trajectory(positions, timestamps):
    positions = np.asarray(positions, dtype=float)
    axes = np.zeros_like(positions)
    return Trajectory(positions, axes, axes, axes, np.asarray(timestamps, dtype=float))


def _three_samples():
    return _trajectory([[0, 0, 0], [3, 4, 0], [3, 4, 5]], [0, 2, 3])


def test_three_sample_trajectory():
    (row,) = summarize_trajectories({"t": _three_samples()}, EndpointPolicy(), StraightLinePathProvider())

    assert row.distance == pytest.approx(10.0)
    assert row.duration == pytest.approx(3.0)
    assert row.average_speed == pytest.approx(10.0 / 3.0)
    assert row.shortest_path_distance == pytest.approx(math.sqrt(50))
    assert row.surplus == pytest.approx(10.0 - math.sqrt(50))
    assert row.ratio == pytest.approx(10.0 / math.sqrt(50))
    assert row.successful == 1
    assert row.path_found


def test_zero_duration_records_nan_speed():
    traj = _trajectory([[0, 0, 0], [1, 0, 0]], [4, 4])
    (row,) = summarize_trajectories({"t": traj}, EndpointPolicy(), StraightLinePathProvider())
    assert math.isnan(row.average_speed)
    assert row.distance == pytest.approx(1.0)


def test_missing_path_degrades_only_path_fields():
    rows = summarize_trajectories(
        {"a": _three_samples(), "b": _three_samples()}, EndpointPolicy(), NoPathProvider()
    )

    assert [row.key for row in rows] == ["a", "b"]
    for row in rows:
        assert not row.path_found
        assert row.successful is None
        assert math.isnan(row.shortest_path_distance)
        assert math.isnan(row.surplus)
        assert math.isnan(row.ratio)
        assert row.distance == pytest.approx(10.0)


def test_zero_length_shortest_path_records_nan_ratio():
    loop = _trajectory([[0, 0, 0], [1, 0, 0], [0, 0, 0]], [0, 1, 2])
    (row,) = summarize_trajectories({"loop": loop}, EndpointPolicy(), StraightLinePathProvider())
    assert row.shortest_path_distance == 0.0
    assert row.surplus == pytest.approx(2.0)
    assert math.isnan(row.ratio)


def test_fixed_end_location_decides_success():
    policy = EndpointPolicy(infer_end=False, end_location=(3, 4, 10))
    (row,) = summarize_trajectories({"t": _three_samples()}, policy, StraightLinePathProvider(), success_radius=2.0)
    assert row.successful == 0

    policy = EndpointPolicy(infer_end=False, end_location=(3, 4, 6))
    (row,) = summarize_trajectories({"t": _three_samples()}, policy, StraightLinePathProvider(), success_radius=2.0)
    assert row.successful == 1


def test_fixed_endpoint_without_location_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        summarize_trajectories({"t": _three_samples()}, EndpointPolicy(infer_start=False), StraightLinePathProvider())


def test_hit_ratios_are_normalised_per_key():
    hits = {"a": {"Wall": 3, "Floor": 1}, "b": {}}
    rows = summarize_trajectories(
        {"a": _three_samples(), "b": _three_samples()},
        EndpointPolicy(),
        StraightLinePathProvider(),
        hits_per_category=hits,
        categories=["Wall", "Floor", "Door"],
    )
    assert rows[0].hit_ratios == {"Wall": 0.75, "Floor": 0.25, "Door": 0.0}
    assert all(math.isnan(v) for v in rows[1].hit_ratios.values())


def test_summary_table_with_key_columns():
    rows = summarize_trajectories(
        {"Participant=p1:Trial=2": _three_samples()}, EndpointPolicy(), StraightLinePathProvider()
    )
    table = summary_table(rows, categories=["Wall"], key_columns=["Participant", "Trial"])

    assert list(table.columns) == ["Participant", "Trial", *METRIC_COLUMNS, "Wall"]
    record = table.iloc[0]
    assert record["Participant"] == "p1"
    assert record["Trial"] == "2"
    assert record["Distance"] == "10.000"
    assert record["AverageSpeed"] == "3.333"
    assert record["Successful"] == "1.000"
    assert record["Wall"] == NOT_COMPUTED


def test_summary_table_marks_invalid_cells():
    rows = summarize_trajectories({"walk.csv": _three_samples()}, EndpointPolicy(), NoPathProvider())
    table = summary_table(rows)

    assert list(table.columns) == ["TrialID", *METRIC_COLUMNS]
    assert table.iloc[0]["TrialID"] == "walk.csv"
    assert table.iloc[0]["RatioShortestPath"] == "NaN"
    assert table.iloc[0]["Successful"] == "NaN"
    assert table.iloc[0]["Duration"] == "3.000"


def test_summary_table_keeps_values_containing_separator():
    rows = summarize_trajectories(
        {"Session=12:30:Trial=1": _three_samples()}, EndpointPolicy(), StraightLinePathProvider()
    )
    table = summary_table(rows, key_columns=["Session", "Trial"])

    assert list(table.columns) == ["Session", "Trial", *METRIC_COLUMNS]
    assert table.iloc[0]["Session"] == "12:30"
    assert table.iloc[0]["Trial"] == "1"


def test_path_corners_are_kept_for_plotting():
    rows = summarize_trajectories(
        {"a": _three_samples(), "b": _three_samples()}, EndpointPolicy(), StraightLinePathProvider()
    )
    assert np.allclose(rows[0].corners, [[0, 0, 0], [3, 4, 5]])

    (missing,) = summarize_trajectories({"a": _three_samples()}, EndpointPolicy(), NoPathProvider())
    assert missing.corners is None
