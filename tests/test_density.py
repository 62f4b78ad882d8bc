import numpy as np
import pytest

from walkthrough_tracks.density import (
    compute_bounds,
    compute_density_field,
    evaluate_gradient,
    evaluate_kde,
    generate_density_heatmap,
    generate_query_points,
    prune_query_points,
)
from walkthrough_tracks.errors import ConfigurationError
from walkthrough_tracks.ingestion import Trajectory


def _trajectory(positions):
    positions = np.asarray(positions, dtype=float)
    axes = np.zeros_like(positions)
    return Trajectory(positions, axes, axes, axes, np.arange(len(positions), dtype=float))


def _walks():
    return {
        "a": _trajectory([[0, 0, 0], [1, 1, 1], [2, 2, 2], [3, 1, 2]]),
        "b": _trajectory([[3, 2, 0], [2, 2, 1], [1, 2, 2]]),
    }


def test_bounds_contain_every_position():
    trajectories = _walks()
    lo, hi = compute_bounds(trajectories)
    for traj in trajectories.values():
        assert np.all(traj.positions >= lo)
        assert np.all(traj.positions <= hi)
    assert np.allclose(lo, [0, 0, 0])
    assert np.allclose(hi, [3, 2, 2])


def test_bounds_of_empty_set():
    assert compute_bounds({}) is None


def test_grid_is_half_open_per_axis():
    points = generate_query_points(np.array([0.0, 0.0, 0.0]), np.array([2.5, 1.0, 3.0]), 1.0)

    assert len(points) == 3 * 1 * 3
    assert np.allclose(np.unique(points[:, 0]), [0, 1, 2])
    assert np.allclose(np.unique(points[:, 1]), [0])
    # max itself is excluded when the span is an exact multiple
    assert 3.0 not in points[:, 2]


def test_grid_with_flat_axis_is_empty():
    points = generate_query_points(np.array([0.0, 1.0, 0.0]), np.array([2.0, 1.0, 2.0]), 0.5)
    assert points.shape == (0, 3)


def test_pruning_boundary():
    samples = np.array([[0.0, 0.0, 0.0]])
    queries = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.5, 0.0, 0.0], [0.0, 2.0, 0.0]])

    kept = prune_query_points(queries, samples, bandwidth=1.0)

    assert {tuple(p) for p in kept} == {(0.0, 0.0, 0.0), (0.5, 0.0, 0.0)}


def test_parallel_and_sequential_pruning_keep_same_set():
    rng = np.random.default_rng(0)
    samples = rng.uniform(0, 10, size=(40, 3))
    queries = generate_query_points(np.zeros(3), np.full(3, 10.0), 0.7)

    sequential = prune_query_points(queries, samples, 1.5, n_jobs=1, chunk_size=97)
    parallel = prune_query_points(queries, samples, 1.5, n_jobs=2, chunk_size=97)

    assert len(sequential) > 0
    assert {tuple(p) for p in sequential} == {tuple(p) for p in parallel}


def test_kde_matches_gaussian_formula():
    h = 0.5
    density = evaluate_kde(np.array([[0.0, 0.0, 0.0]]), np.array([[h, 0.0, 0.0], [0.0, 0.0, 0.0]]), h)
    peak = (2 * np.pi * h**2) ** -1.5
    assert np.allclose(density, [peak * np.exp(-0.5), peak])


def test_kde_averages_over_samples():
    samples = np.array([[0.0, 0.0, 0.0], [100.0, 0.0, 0.0]])
    single = evaluate_kde(samples[:1], np.zeros((1, 3)), 1.0)
    both = evaluate_kde(samples, np.zeros((1, 3)), 1.0)
    assert np.allclose(both, single / 2)


def test_gradient_clamps_and_keeps_base_colour():
    rgba = evaluate_gradient("red", np.array([-1.0, 0.0, 0.25, 1.0, 3.0]))
    assert np.allclose(rgba[:, :3], [[1, 0, 0]] * 5)
    assert np.allclose(rgba[:, 3], [0, 0, 0.25, 1, 1])


def test_density_field_is_thresholded_and_grouped():
    field = compute_density_field(_walks(), ["red", (0.0, 0.0, 1.0)], grid_spacing=0.25, bandwidth=0.5, density_threshold=0.1)

    assert len(field) > 0
    assert np.all(field.densities > 0.1)
    assert len(field.points) == len(field.colors) == len(field.keys)

    keys = list(field.keys)
    assert keys == sorted(keys)  # all of "a" precede all of "b"
    a = field.keys == "a"
    assert np.allclose(field.colors[a, :3], [1, 0, 0])
    assert np.allclose(field.colors[~a, :3], [0, 0, 1])
    assert np.allclose(field.colors[:, 3], np.clip(field.densities, 0, 1))


def test_colours_cycle_through_base_colours():
    trajectories = {
        "a": _walks()["a"],
        "b": _walks()["b"],
        "c": _trajectory([[0, 0, 0], [1, 1, 1], [2, 2, 2], [3, 1, 2]]),
    }
    field = compute_density_field(trajectories, ["red", "blue"], grid_spacing=0.25, bandwidth=0.5)
    c = field.keys == "c"
    assert c.any()
    assert np.allclose(field.colors[c, :3], [1, 0, 0])


def test_heatmap_of_empty_set_is_empty():
    points, colors = generate_density_heatmap({}, ["red"], grid_spacing=1.0, bandwidth=1.0)
    assert len(points) == 0
    assert len(colors) == 0


@pytest.mark.parametrize("spacing, bandwidth", [(0.0, 1.0), (-1.0, 1.0), (1.0, 0.0)])
def test_non_positive_parameters_are_rejected(spacing, bandwidth):
    with pytest.raises(ConfigurationError):
        generate_density_heatmap(_walks(), ["red"], grid_spacing=spacing, bandwidth=bandwidth)


def test_density_equal_to_threshold_is_dropped():
    # the grid collapses to the single query point at the origin
    trajectories = {"a": _trajectory([[0, 0, 0]]), "b": _trajectory([[1, 1, 1]])}
    peak = evaluate_kde(np.zeros((1, 3)), np.zeros((1, 3)), 1.0)[0]

    at_peak = compute_density_field(trajectories, ["red"], grid_spacing=1.0, bandwidth=1.0, density_threshold=peak)
    assert len(at_peak) == 0

    below_peak = compute_density_field(
        trajectories, ["red"], grid_spacing=1.0, bandwidth=1.0, density_threshold=np.nextafter(peak, 0)
    )
    assert list(below_peak.keys) == ["a"]
    assert np.allclose(below_peak.points, [[0, 0, 0]])


def test_pruning_rejects_zero_workers():
    with pytest.raises(ConfigurationError):
        prune_query_points(np.zeros((1, 3)), np.zeros((1, 3)), 1.0, n_jobs=0)
