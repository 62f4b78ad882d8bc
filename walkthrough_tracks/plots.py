"""Optional plotting utilities for debugging.

Static matplotlib views of the density field and of the walked paths, seen
from above (x/z plane, y is height).
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import matplotlib.pyplot as plt
import numpy as np

from walkthrough_tracks.density import DensityField
from walkthrough_tracks.ingestion import Trajectory


def plot_density_field(field: DensityField, output_path: Path, point_size: float = 4.0) -> None:
    """Scatter the retained density points using their RGBA colours."""

    if len(field) == 0:
        return

    fig, ax = plt.subplots(figsize=(6, 6))
    ax.scatter(field.points[:, 0], field.points[:, 2], c=field.colors, s=point_size, linewidths=0)
    ax.set_xlabel("X")
    ax.set_ylabel("Z")
    ax.set_aspect("equal", adjustable="datalim")
    ax.set_title(f"Density heatmap ({len(field)} points)")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=150)
    plt.close(fig)


def plot_trajectories(
    trajectories: Dict[str, Trajectory],
    output_path: Path,
    shortest_paths: Optional[Dict[str, np.ndarray]] = None,
) -> None:
    """Plot every trajectory's path, one line per key.

    Shortest-path polylines given per key are drawn dashed in the colour of
    the walked path.
    """

    if not trajectories:
        return

    fig, ax = plt.subplots(figsize=(6, 6))
    for key, trajectory in trajectories.items():
        (line,) = ax.plot(trajectory.positions[:, 0], trajectory.positions[:, 2], label=key, linewidth=1)
        corners = (shortest_paths or {}).get(key)
        if corners is not None and len(corners):
            ax.plot(corners[:, 0], corners[:, 2], "--", color=line.get_color(), linewidth=1)
        ax.plot(trajectory.positions[0, 0], trajectory.positions[0, 2], "o", color="black", markersize=3)
    ax.set_xlabel("X")
    ax.set_ylabel("Z")
    ax.set_aspect("equal", adjustable="datalim")
    if len(trajectories) <= 10:
        ax.legend(loc="best", fontsize=7)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
