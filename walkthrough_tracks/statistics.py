"""Per-trajectory summary statistics.

For each trajectory computes duration, walked distance, average speed and a
comparison against the shortest navigable path between its endpoints. Rows
degrade to NaN cells instead of failing when a path cannot be found or a
ratio would divide by zero.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from walkthrough_tracks.errors import ConfigurationError, PathNotFound
from walkthrough_tracks.ingestion import Trajectory, deconstruct_super_key
from walkthrough_tracks.navigation import ShortestPathProvider, polyline_length

METRIC_COLUMNS: List[str] = [
    "Duration",
    "Distance",
    "AverageSpeed",
    "ShortestPathDistance",
    "SurplusShortestPath",
    "RatioShortestPath",
    "Successful",
]
NOT_COMPUTED = "not computed"
DEFAULT_SNAP_TOLERANCE = 100.0


@dataclass(frozen=True)
class EndpointPolicy:
    """Where start and end positions come from: the trajectory or fixed points."""

    infer_start: bool = True
    infer_end: bool = True
    start_location: Optional[Sequence[float]] = None
    end_location: Optional[Sequence[float]] = None

    def resolve(self, trajectory: Trajectory) -> tuple[np.ndarray, np.ndarray]:
        if self.infer_start:
            start = trajectory.positions[0]
        elif self.start_location is None:
            raise ConfigurationError("start_location is required when the start is not inferred.")
        else:
            start = np.asarray(self.start_location, dtype=float)

        if self.infer_end:
            end = trajectory.positions[-1]
        elif self.end_location is None:
            raise ConfigurationError("end_location is required when the end is not inferred.")
        else:
            end = np.asarray(self.end_location, dtype=float)
        return start, end


@dataclass(frozen=True)
class SummaryRow:
    key: str
    duration: float
    distance: float
    average_speed: float
    shortest_path_distance: float
    surplus: float
    ratio: float
    successful: Optional[int]
    path_found: bool
    hit_ratios: Optional[Dict[str, float]] = None
    # corners of the shortest path, kept for plotting
    corners: Optional[np.ndarray] = field(default=None, compare=False, repr=False)

    def metrics(self) -> List[float]:
        return [
            self.duration,
            self.distance,
            self.average_speed,
            self.shortest_path_distance,
            self.surplus,
            self.ratio,
            math.nan if self.successful is None else float(self.successful),
        ]


def path_length(positions: np.ndarray) -> float:
    """Total distance along consecutive positions."""

    positions = np.asarray(positions, dtype=float).reshape(-1, 3)
    if len(positions) < 2:
        return 0.0
    return float(np.linalg.norm(np.diff(positions, axis=0), axis=1).sum())


def _safe_ratio(numerator: float, denominator: float, label: str, key: str) -> float:
    if denominator == 0:
        logging.warning("%s for %s divides by zero; recording NaN.", label, key)
        return math.nan
    return numerator / denominator


def hit_ratios_for_key(hits: Mapping[str, int] | None, categories: Sequence[str]) -> Dict[str, float]:
    """Normalise raw hit counts by the key's total hit count."""

    hits = hits or {}
    total = sum(hits.values())
    if total == 0:
        return {category: math.nan for category in categories}
    return {category: hits.get(category, 0) / total for category in categories}


def summarize_trajectory(
    key: str,
    trajectory: Trajectory,
    endpoint_policy: EndpointPolicy,
    path_provider: ShortestPathProvider,
    success_radius: float = 2.0,
    snap_tolerance: float = DEFAULT_SNAP_TOLERANCE,
) -> SummaryRow:
    """Compute the summary metrics of a single trajectory."""

    if len(trajectory) == 0:
        raise ValueError(f"Trajectory {key} has no samples.")

    duration = float(trajectory.timestamps[-1] - trajectory.timestamps[0])
    distance = path_length(trajectory.positions)
    average_speed = _safe_ratio(distance, duration, "Average speed", key)

    start, end = endpoint_policy.resolve(trajectory)
    try:
        corners = path_provider.find_path(start, end, snap_tolerance)
    except PathNotFound as exc:
        logging.warning("Shortest path for %s could not be calculated: %s", key, exc)
        return SummaryRow(
            key=key,
            duration=duration,
            distance=distance,
            average_speed=average_speed,
            shortest_path_distance=math.nan,
            surplus=math.nan,
            ratio=math.nan,
            successful=None,
            path_found=False,
        )

    corners = np.asarray(corners, dtype=float).reshape(-1, 3)
    shortest = polyline_length(corners)
    snapped_end = corners[-1] if len(corners) else np.asarray(end, dtype=float)
    final_gap = float(np.linalg.norm(trajectory.positions[-1] - snapped_end))

    return SummaryRow(
        key=key,
        duration=duration,
        distance=distance,
        average_speed=average_speed,
        shortest_path_distance=shortest,
        surplus=distance - shortest,
        ratio=_safe_ratio(distance, shortest, "Shortest path ratio", key),
        successful=1 if final_gap < success_radius else 0,
        path_found=True,
        corners=corners,
    )


def summarize_trajectories(
    trajectories: Dict[str, Trajectory],
    endpoint_policy: EndpointPolicy,
    path_provider: ShortestPathProvider,
    success_radius: float = 2.0,
    hits_per_category: Mapping[str, Mapping[str, int]] | None = None,
    categories: Sequence[str] = (),
    snap_tolerance: float = DEFAULT_SNAP_TOLERANCE,
) -> List[SummaryRow]:
    """Summarise every trajectory in map order.

    ``hits_per_category`` holds raw hit counts per key and category from an
    attention analysis; without it the category cells are reported as not
    computed.
    """

    rows: List[SummaryRow] = []
    for key, trajectory in trajectories.items():
        row = summarize_trajectory(
            key,
            trajectory,
            endpoint_policy,
            path_provider,
            success_radius=success_radius,
            snap_tolerance=snap_tolerance,
        )
        if hits_per_category is not None:
            row = replace(row, hit_ratios=hit_ratios_for_key(hits_per_category.get(key), categories))
        rows.append(row)

    failed = sum(not row.path_found for row in rows)
    if failed:
        logging.warning("No shortest path for %d of %d trajectories.", failed, len(rows))
    logging.info("Summarised %d trajectories.", len(rows))
    return rows


def _format_number(value: float) -> str:
    return "NaN" if math.isnan(value) else f"{value:.3f}"


def summary_table(
    rows: Sequence[SummaryRow],
    categories: Sequence[str] = (),
    key_columns: Sequence[str] | None = None,
) -> pd.DataFrame:
    """Build the formatted summary table.

    With ``key_columns`` the super key of each row is split into one column
    per key column; otherwise a single ``TrialID`` column holds the raw key.
    """

    id_columns = list(key_columns) if key_columns else ["TrialID"]
    records: List[List[str]] = []
    for row in rows:
        if key_columns:
            _, values = deconstruct_super_key(row.key, key_columns)
            identifiers = values
        else:
            identifiers = [row.key]

        cells = [*identifiers, *(_format_number(v) for v in row.metrics())]
        for category in categories:
            if row.hit_ratios is None:
                cells.append(NOT_COMPUTED)
            else:
                cells.append(_format_number(row.hit_ratios.get(category, math.nan)))
        records.append(cells)

    return pd.DataFrame(records, columns=[*id_columns, *METRIC_COLUMNS, *categories], dtype=str)
