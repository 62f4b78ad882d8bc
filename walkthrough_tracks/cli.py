"""CLI entry point for the walkthrough analysis pipeline.

Reads the raw walkthrough files, builds trajectories, and writes the density
heatmap and the summary table as configured.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Dict, List, Optional

from walkthrough_tracks.config import (
    DensityConfig,
    IngestionConfig,
    SummaryConfig,
    get_nested,
    load_config,
)
from walkthrough_tracks.density import compute_density_field
from walkthrough_tracks.ingestion import Trajectory, ingest_files, list_input_files
from walkthrough_tracks.io import generate_unique_filename, save_dataframe, write_density_file
from walkthrough_tracks.navigation import (
    ShortestPathProvider,
    StraightLinePathProvider,
    WaypointGraphPathProvider,
)
from walkthrough_tracks.statistics import EndpointPolicy, SummaryRow, summarize_trajectories, summary_table


def configure_logging(log_cfg: Dict[str, object]) -> None:
    """Configure root logger with both file and console handlers."""

    log_dir = Path(log_cfg.get("dir", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    filename = log_cfg.get("filename", "walkthrough.log")
    log_path = log_dir / filename
    level_name = str(log_cfg.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s - %(levelname)s - %(message)s"
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    file_handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(fmt))
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(fmt))

    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    root.info("Logging to %s (level=%s)", log_path, level_name)


def build_path_provider(summary_cfg: SummaryConfig, delimiter: str) -> ShortestPathProvider:
    """Use the configured waypoint graph, or straight lines when none is given."""

    if summary_cfg.waypoint_nodes and summary_cfg.waypoint_edges:
        return WaypointGraphPathProvider.from_files(
            summary_cfg.waypoint_nodes, summary_cfg.waypoint_edges, delimiter=delimiter
        )
    logging.info("No waypoint graph configured; shortest paths are straight lines.")
    return StraightLinePathProvider()


def run_density(
    trajectories: Dict[str, Trajectory],
    density_cfg: DensityConfig,
    output_dir: Path,
    file_name: str,
    delimiter: str,
    save_plots: bool,
) -> Path:
    field = compute_density_field(
        trajectories,
        density_cfg.colors,
        grid_spacing=density_cfg.grid_spacing,
        bandwidth=density_cfg.bandwidth,
        density_threshold=density_cfg.density_threshold,
        n_jobs=density_cfg.n_jobs,
    )
    path = write_density_file(
        generate_unique_filename(output_dir, file_name), field.points, field.densities, delimiter=delimiter
    )
    if save_plots:
        from walkthrough_tracks.plots import plot_density_field

        plot_density_field(field, path.with_suffix(".png"))
    return path


def run_summary(
    trajectories: Dict[str, Trajectory],
    summary_cfg: SummaryConfig,
    ingestion_cfg: IngestionConfig,
    path_provider: ShortestPathProvider,
    output_dir: Path,
    file_name: str,
) -> List[SummaryRow]:
    policy = EndpointPolicy(
        infer_start=summary_cfg.infer_start_location,
        infer_end=summary_cfg.infer_end_location,
        start_location=summary_cfg.start_location,
        end_location=summary_cfg.end_location,
    )
    rows = summarize_trajectories(
        trajectories,
        policy,
        path_provider,
        success_radius=summary_cfg.success_radius,
        categories=summary_cfg.categories,
        snap_tolerance=summary_cfg.snap_tolerance,
    )
    table = summary_table(
        rows,
        categories=summary_cfg.categories,
        key_columns=ingestion_cfg.key_columns if ingestion_cfg.multiple_trials_per_file else None,
    )
    save_dataframe(table, generate_unique_filename(output_dir, file_name), delimiter=ingestion_cfg.delimiter)
    return rows


def main(config_path: str = "config/walkthrough.yaml") -> None:
    cfg = load_config(config_path)

    configure_logging(cfg.get("logging", {}) or {})

    ingestion_cfg = IngestionConfig.from_dict(cfg)
    density_cfg = DensityConfig.from_dict(cfg)
    summary_cfg = SummaryConfig.from_dict(cfg)
    # load the waypoint graph before any output is written
    path_provider = build_path_provider(summary_cfg, ingestion_cfg.delimiter) if summary_cfg.enabled else None

    input_cfg = cfg.get("input", {}) or {}
    if ingestion_cfg.use_all_files_in_directory:
        source = input_cfg.get("raw_data_directory", "data/raw")
    else:
        source = input_cfg.get("raw_data_file", "data/raw/Walkthrough.csv")
    trajectories = ingest_files(list_input_files(source, ingestion_cfg), ingestion_cfg)
    if not trajectories:
        logging.warning("No trajectories available after filtering; exiting.")
        return

    output_cfg = cfg.get("output", {}) or {}
    output_dir = Path(output_cfg.get("dir", "output"))
    save_plots = bool(output_cfg.get("save_plots", False))

    if density_cfg.enabled:
        run_density(
            trajectories,
            density_cfg,
            output_dir,
            get_nested(cfg, ["output", "density_file"], "density.csv"),
            ingestion_cfg.delimiter,
            save_plots,
        )

    rows: Optional[List[SummaryRow]] = None
    if summary_cfg.enabled:
        rows = run_summary(
            trajectories,
            summary_cfg,
            ingestion_cfg,
            path_provider,
            output_dir,
            get_nested(cfg, ["output", "summary_file"], "summary.csv"),
        )

    if save_plots:
        from walkthrough_tracks.plots import plot_trajectories

        shortest_paths = {row.key: row.corners for row in rows or [] if row.corners is not None}
        plot_trajectories(trajectories, output_dir / "trajectories.png", shortest_paths=shortest_paths)


def entrypoint() -> None:
    parser = argparse.ArgumentParser(description="Walkthrough trajectory analysis pipeline.")
    parser.add_argument(
        "-c",
        "--config",
        default="config/walkthrough.yaml",
        help="Path to YAML config file.",
    )
    args = parser.parse_args()
    main(args.config)


if __name__ == "__main__":
    entrypoint()
