"""Spatial density heatmap over walkthrough trajectories.

Builds a regular query grid over the bounding box of all positions, drops grid
points farther than one bandwidth from every sample, evaluates a Gaussian KDE
per trajectory on the remaining points, thresholds the densities and maps
them to RGBA colours (transparent at 0, opaque base colour at 1).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple, Union

import numpy as np
from joblib import Parallel, delayed
from matplotlib.colors import to_rgba
from scipy.spatial import cKDTree
from sklearn.neighbors import KernelDensity

from walkthrough_tracks.errors import ConfigurationError
from walkthrough_tracks.ingestion import Trajectory

ColorLike = Union[str, Sequence[float]]

PRUNE_CHUNK_SIZE = 2048


@dataclass(frozen=True)
class DensityField:
    """Retained query points with their density and colour, grouped by trajectory."""

    keys: np.ndarray  # (M,) trajectory key per point
    points: np.ndarray  # (M, 3)
    densities: np.ndarray  # (M,)
    colors: np.ndarray  # (M, 4) RGBA

    def __len__(self) -> int:
        return len(self.points)

    @classmethod
    def empty(cls) -> "DensityField":
        return cls(np.empty(0, dtype=object), np.empty((0, 3)), np.empty(0), np.empty((0, 4)))


def all_positions(trajectories: Dict[str, Trajectory]) -> np.ndarray:
    """Stack the positions of every trajectory into one ``(N, 3)`` array."""

    if not trajectories:
        return np.empty((0, 3))
    return np.concatenate([traj.positions for traj in trajectories.values()], axis=0)


def compute_bounds(trajectories: Dict[str, Trajectory]) -> Tuple[np.ndarray, np.ndarray] | None:
    """Return per-axis ``(min, max)`` over all positions, or ``None`` when there are none."""

    positions = all_positions(trajectories)
    if len(positions) == 0:
        return None
    return positions.min(axis=0), positions.max(axis=0)


def generate_query_points(min_point: np.ndarray, max_point: np.ndarray, spacing: float) -> np.ndarray:
    """Enumerate grid points on ``[min, max)`` per axis at ``spacing``.

    Each axis holds ``ceil((max - min) / spacing)`` values, so the upper bound
    itself is never included and a span that is not a multiple of ``spacing``
    is truncated at the top. Points are ordered x-major, then y, then z.
    """

    if spacing <= 0:
        raise ConfigurationError(f"grid spacing must be positive, got {spacing}")

    axes = []
    for lo, hi in zip(np.asarray(min_point, dtype=float), np.asarray(max_point, dtype=float)):
        count = max(math.ceil((hi - lo) / spacing), 0)
        axes.append(lo + spacing * np.arange(count))
    grid = np.meshgrid(*axes, indexing="ij")
    return np.stack([g.ravel() for g in grid], axis=1)


def _within_bandwidth(chunk: np.ndarray, tree: cKDTree, bandwidth: float) -> np.ndarray:
    """Boolean mask of chunk points whose nearest sample is closer than ``bandwidth``."""

    # no neighbour inside the bound comes back as an infinite distance
    distances, _ = tree.query(chunk, k=1, distance_upper_bound=bandwidth)
    return distances < bandwidth


def prune_query_points(
    query_points: np.ndarray,
    samples: np.ndarray,
    bandwidth: float,
    n_jobs: int = 1,
    chunk_size: int = PRUNE_CHUNK_SIZE,
) -> np.ndarray:
    """Keep query points strictly closer than ``bandwidth`` to some sample.

    Chunks of query points are independent and only read the shared k-d tree
    of ``samples``, so the retained set is the same for every ``n_jobs`` value.
    """

    if bandwidth <= 0:
        raise ConfigurationError(f"bandwidth must be positive, got {bandwidth}")
    if n_jobs == 0:
        raise ConfigurationError("n_jobs must not be 0")

    query_points = np.asarray(query_points, dtype=float).reshape(-1, 3)
    samples = np.asarray(samples, dtype=float).reshape(-1, 3)
    if len(query_points) == 0 or len(samples) == 0:
        return np.empty((0, 3))

    tree = cKDTree(samples)
    chunks = [query_points[i : i + chunk_size] for i in range(0, len(query_points), chunk_size)]
    if n_jobs == 1:
        masks = [_within_bandwidth(chunk, tree, bandwidth) for chunk in chunks]
    else:
        masks = Parallel(n_jobs=n_jobs)(delayed(_within_bandwidth)(chunk, tree, bandwidth) for chunk in chunks)

    kept = [chunk[mask] for chunk, mask in zip(chunks, masks)]
    return np.concatenate(kept, axis=0)


def evaluate_kde(samples: np.ndarray, query_points: np.ndarray, bandwidth: float) -> np.ndarray:
    """Gaussian kernel density of ``samples`` evaluated at ``query_points``.

    ``density(q) = 1/n * sum_i (2 pi h^2)^(-3/2) exp(-|q - p_i|^2 / (2 h^2))``

    This is the normalised estimate, so it carries an ``h^-3`` factor that the
    plain kernel sum ``1/n * sum_i K((q - p_i) / h)`` does not. The two agree
    only for ``bandwidth == 1``; density thresholds must be chosen for the
    normalised values.
    """

    samples = np.asarray(samples, dtype=float).reshape(-1, 3)
    query_points = np.asarray(query_points, dtype=float).reshape(-1, 3)
    if len(query_points) == 0:
        return np.empty(0)
    if len(samples) == 0:
        return np.zeros(len(query_points))

    kde = KernelDensity(kernel="gaussian", bandwidth=bandwidth).fit(samples)
    return np.exp(kde.score_samples(query_points))


def evaluate_gradient(color: ColorLike, values: np.ndarray) -> np.ndarray:
    """Map values to RGBA on a transparent-to-opaque gradient of ``color``.

    Values are clamped to ``[0, 1]``; the RGB part is constant and alpha equals
    the clamped value.
    """

    r, g, b, _ = to_rgba(color)
    alpha = np.clip(np.asarray(values, dtype=float).reshape(-1), 0.0, 1.0)
    rgba = np.empty((len(alpha), 4))
    rgba[:, :3] = (r, g, b)
    rgba[:, 3] = alpha
    return rgba


def compute_density_field(
    trajectories: Dict[str, Trajectory],
    base_colors: Sequence[ColorLike],
    grid_spacing: float,
    bandwidth: float,
    density_threshold: float = 0.1,
    n_jobs: int = 1,
) -> DensityField:
    """Compute the thresholded per-trajectory density field."""

    if grid_spacing <= 0:
        raise ConfigurationError(f"grid_spacing must be positive, got {grid_spacing}")
    if bandwidth <= 0:
        raise ConfigurationError(f"bandwidth must be positive, got {bandwidth}")
    if not base_colors:
        raise ConfigurationError("At least one base colour is required.")

    bounds = compute_bounds(trajectories)
    if bounds is None:
        logging.warning("No positions available; density field is empty.")
        return DensityField.empty()

    query_points = generate_query_points(bounds[0], bounds[1], grid_spacing)
    logging.info("Number of query points before filtering: %d", len(query_points))
    query_points = prune_query_points(query_points, all_positions(trajectories), bandwidth, n_jobs=n_jobs)
    logging.info("Number of query points after filtering: %d", len(query_points))

    keys: List[np.ndarray] = []
    points: List[np.ndarray] = []
    densities: List[np.ndarray] = []
    colors: List[np.ndarray] = []
    for index, (key, trajectory) in enumerate(trajectories.items()):
        density = evaluate_kde(trajectory.positions, query_points, bandwidth)
        keep = density > density_threshold
        logging.debug("Trajectory %s keeps %d of %d query points", key, int(keep.sum()), len(keep))

        keys.append(np.full(int(keep.sum()), key, dtype=object))
        points.append(query_points[keep])
        densities.append(density[keep])
        colors.append(evaluate_gradient(base_colors[index % len(base_colors)], density[keep]))

    return DensityField(
        keys=np.concatenate(keys),
        points=np.concatenate(points, axis=0),
        densities=np.concatenate(densities),
        colors=np.concatenate(colors, axis=0),
    )


def generate_density_heatmap(
    trajectories: Dict[str, Trajectory],
    base_colors: Sequence[ColorLike],
    grid_spacing: float,
    bandwidth: float,
    density_threshold: float = 0.1,
    n_jobs: int = 1,
) -> Tuple[np.ndarray, np.ndarray]:
    """Return the ordered retained points and their RGBA colours."""

    field = compute_density_field(
        trajectories,
        base_colors,
        grid_spacing=grid_spacing,
        bandwidth=bandwidth,
        density_threshold=density_threshold,
        n_jobs=n_jobs,
    )
    return field.points, field.colors
