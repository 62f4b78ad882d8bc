"""Shortest-path providers used by the summary statistics.

A provider snaps both endpoints onto its navigable space (within a tolerance)
and returns the corner polyline of the shortest path between the snapped
points, or raises :class:`PathNotFound`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, Sequence, Tuple

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import dijkstra
from scipy.spatial import cKDTree

from walkthrough_tracks.errors import PathNotFound
from walkthrough_tracks.io import read_table_frame


class ShortestPathProvider(Protocol):
    def find_path(self, start: np.ndarray, end: np.ndarray, snap_tolerance: float) -> np.ndarray:
        """Return the ``(K, 3)`` corner polyline from snapped start to snapped end."""
        ...


def polyline_length(corners: np.ndarray) -> float:
    """Sum of the Euclidean lengths of consecutive polyline segments."""

    corners = np.asarray(corners, dtype=float).reshape(-1, 3)
    if len(corners) < 2:
        return 0.0
    return float(np.linalg.norm(np.diff(corners, axis=0), axis=1).sum())


class StraightLinePathProvider:
    """Obstacle-free space: every point is navigable and paths are straight."""

    def find_path(self, start: np.ndarray, end: np.ndarray, snap_tolerance: float) -> np.ndarray:
        return np.vstack([np.asarray(start, dtype=float), np.asarray(end, dtype=float)])


class WaypointGraphPathProvider:
    """Shortest paths over a prebuilt, undirected waypoint graph.

    Endpoints snap to the nearest waypoint within ``snap_tolerance``. Edge
    weights are the Euclidean distances between their waypoints.
    """

    def __init__(self, nodes: np.ndarray, edges: Sequence[Tuple[int, int]]) -> None:
        self.nodes = np.asarray(nodes, dtype=float).reshape(-1, 3)
        if len(self.nodes) == 0:
            raise ValueError("A waypoint graph needs at least one node.")

        edges = np.asarray(edges, dtype=int).reshape(-1, 2)
        if len(edges) and (edges.min() < 0 or edges.max() >= len(self.nodes)):
            raise ValueError("Edge references a waypoint index outside the node list.")

        weights = np.linalg.norm(self.nodes[edges[:, 0]] - self.nodes[edges[:, 1]], axis=1)
        n = len(self.nodes)
        self._graph = csr_matrix((weights, (edges[:, 0], edges[:, 1])), shape=(n, n))
        self._tree = cKDTree(self.nodes)

    @classmethod
    def from_files(
        cls,
        nodes_path: str | Path,
        edges_path: str | Path,
        delimiter: str = ";",
    ) -> "WaypointGraphPathProvider":
        """Load waypoints (columns ``X, Y, Z``) and edges (columns ``From, To``)."""

        nodes = read_table_frame(nodes_path, delimiter=delimiter)[["X", "Y", "Z"]].astype(float).to_numpy()
        edges = read_table_frame(edges_path, delimiter=delimiter)[["From", "To"]].astype(int).to_numpy()
        logging.info("Loaded waypoint graph with %d nodes and %d edges", len(nodes), len(edges))
        return cls(nodes, edges)

    def _snap(self, position: np.ndarray, snap_tolerance: float) -> int:
        distance, index = self._tree.query(np.asarray(position, dtype=float), k=1)
        if distance > snap_tolerance:
            raise PathNotFound(
                f"No waypoint within {snap_tolerance} of {tuple(np.round(position, 3))} (nearest {distance:.3f})."
            )
        return int(index)

    def find_path(self, start: np.ndarray, end: np.ndarray, snap_tolerance: float) -> np.ndarray:
        source = self._snap(start, snap_tolerance)
        target = self._snap(end, snap_tolerance)

        distances, predecessors = dijkstra(
            self._graph, directed=False, indices=source, return_predecessors=True
        )
        if not np.isfinite(distances[target]):
            raise PathNotFound(f"Waypoint {target} is unreachable from waypoint {source}.")

        path = [target]
        while path[-1] != source:
            path.append(int(predecessors[path[-1]]))
        return self.nodes[path[::-1]]
