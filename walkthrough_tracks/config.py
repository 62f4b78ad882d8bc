"""Configuration helpers for the walkthrough analysis pipeline.

Provides YAML loading, nested lookups with defaults, and the typed settings
consumed by ingestion, density estimation and the summary step.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from walkthrough_tracks.errors import ConfigurationError


def load_config(path: str | Path) -> Dict[str, Any]:
    """Load a YAML configuration file."""

    with Path(path).open("r", encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def get_nested(config: Dict[str, Any], keys: list[str], default: Any) -> Any:
    """Retrieve a nested value from a config dict with a default."""

    current: Any = config
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


@dataclass(frozen=True)
class ColumnBindings:
    """Names of the columns holding pose and time values."""

    position_x: str = "PositionX"
    position_y: str = "PositionY"
    position_z: str = "PositionZ"
    direction_x: str = "DirectionX"
    direction_y: str = "DirectionY"
    direction_z: str = "DirectionZ"
    up_x: str = "UpX"
    up_y: str = "UpY"
    up_z: str = "UpZ"
    right_x: str = "RightX"
    right_y: str = "RightY"
    right_z: str = "RightZ"
    time: str = "Time"
    quaternion_w: str = "QuaternionW"
    quaternion_x: str = "QuaternionX"
    quaternion_y: str = "QuaternionY"
    quaternion_z: str = "QuaternionZ"

    @property
    def position(self) -> List[str]:
        return [self.position_x, self.position_y, self.position_z]

    @property
    def direction(self) -> List[str]:
        return [self.direction_x, self.direction_y, self.direction_z]

    @property
    def up(self) -> List[str]:
        return [self.up_x, self.up_y, self.up_z]

    @property
    def right(self) -> List[str]:
        return [self.right_x, self.right_y, self.right_z]

    @property
    def quaternion(self) -> List[str]:
        """Quaternion columns in (w, x, y, z) order."""
        return [self.quaternion_w, self.quaternion_x, self.quaternion_y, self.quaternion_z]

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any] | None) -> "ColumnBindings":
        cfg = cfg or {}
        unknown = sorted(set(cfg) - set(cls.__dataclass_fields__))
        if unknown:
            raise ConfigurationError(f"Unknown column bindings: {unknown}")
        return cls(**{key: str(value) for key, value in cfg.items()})


@dataclass(frozen=True)
class IngestionConfig:
    """Settings that control how raw rows become keyed trajectories."""

    use_quaternion: bool = False
    multiple_trials_per_file: bool = False
    use_all_files_in_directory: bool = False
    key_columns: Tuple[str, ...] = ()
    # column -> allowed values; a row must pass every filter
    filters: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    columns: ColumnBindings = field(default_factory=ColumnBindings)
    delimiter: str = ";"

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` for unsupported option combinations."""

        if self.multiple_trials_per_file and self.use_all_files_in_directory:
            raise ConfigurationError(
                "Using multiple files and multiple trials in one file is not supported."
            )
        if self.multiple_trials_per_file and not self.key_columns:
            raise ConfigurationError("key_columns are required when multiple_trials_per_file is set.")
        for column, allowed in self.filters.items():
            if not allowed:
                raise ConfigurationError(f"Filter on column {column} lists no allowed values.")
        if not self.delimiter:
            raise ConfigurationError("The delimiter must be a non-empty string.")

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "IngestionConfig":
        """Build ingestion settings from the ``input``, ``columns`` and ``filters`` sections."""

        input_cfg = cfg.get("input", {}) or {}
        filters_cfg = cfg.get("filters", {}) or {}
        filters = {str(col): tuple(str(v) for v in values or ()) for col, values in filters_cfg.items()}
        config = cls(
            use_quaternion=bool(input_cfg.get("use_quaternion", False)),
            multiple_trials_per_file=bool(input_cfg.get("multiple_trials_per_file", False)),
            use_all_files_in_directory=bool(input_cfg.get("use_all_files_in_directory", False)),
            key_columns=tuple(str(col) for col in input_cfg.get("key_columns", []) or []),
            filters=filters,
            columns=ColumnBindings.from_dict(cfg.get("columns")),
            delimiter=str(input_cfg.get("delimiter", ";")),
        )
        config.validate()
        return config


@dataclass(frozen=True)
class DensityConfig:
    """Settings for the spatial density heatmap."""

    enabled: bool = False
    grid_spacing: float = 1.0
    bandwidth: float = 1.0
    density_threshold: float = 0.1
    colors: Tuple[str, ...] = ("tab:red", "tab:blue", "tab:green", "tab:orange")
    n_jobs: int = 1

    def validate(self) -> None:
        if self.grid_spacing <= 0:
            raise ConfigurationError(f"grid_spacing must be positive, got {self.grid_spacing}")
        if self.bandwidth <= 0:
            raise ConfigurationError(f"bandwidth must be positive, got {self.bandwidth}")
        if not self.colors:
            raise ConfigurationError("At least one base colour is required for the density heatmap.")
        if self.n_jobs == 0:
            raise ConfigurationError("n_jobs must be a positive worker count or negative for all cores, got 0")

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "DensityConfig":
        density_cfg = cfg.get("density", {}) or {}
        config = cls(
            enabled=bool(density_cfg.get("enabled", False)),
            grid_spacing=float(density_cfg.get("grid_spacing", 1.0)),
            bandwidth=float(density_cfg.get("bandwidth", 1.0)),
            density_threshold=float(density_cfg.get("density_threshold", 0.1)),
            colors=tuple(density_cfg.get("colors", cls.colors)),
            n_jobs=int(density_cfg.get("n_jobs", 1)),
        )
        if config.enabled:
            config.validate()
        return config


@dataclass(frozen=True)
class SummaryConfig:
    """Settings for the per-trajectory summary table."""

    enabled: bool = False
    infer_start_location: bool = True
    infer_end_location: bool = True
    start_location: Optional[Tuple[float, float, float]] = None
    end_location: Optional[Tuple[float, float, float]] = None
    success_radius: float = 2.0
    snap_tolerance: float = 100.0
    categories: Tuple[str, ...] = ()
    waypoint_nodes: Optional[str] = None
    waypoint_edges: Optional[str] = None

    def validate(self) -> None:
        if not self.infer_start_location and self.start_location is None:
            raise ConfigurationError("start_location is required when the start is not inferred.")
        if not self.infer_end_location and self.end_location is None:
            raise ConfigurationError("end_location is required when the end is not inferred.")
        for name, location in (("start_location", self.start_location), ("end_location", self.end_location)):
            if location is not None and len(location) != 3:
                raise ConfigurationError(f"{name} needs three coordinates, got {len(location)}")
        if self.success_radius <= 0:
            raise ConfigurationError(f"success_radius must be positive, got {self.success_radius}")
        if self.snap_tolerance < 0:
            raise ConfigurationError(f"snap_tolerance must not be negative, got {self.snap_tolerance}")
        if bool(self.waypoint_nodes) != bool(self.waypoint_edges):
            raise ConfigurationError("navigation needs both a nodes and an edges file.")

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "SummaryConfig":
        summary_cfg = cfg.get("summary", {}) or {}
        start = summary_cfg.get("start_location")
        end = summary_cfg.get("end_location")
        navigation_cfg = summary_cfg.get("navigation", {}) or {}
        config = cls(
            enabled=bool(summary_cfg.get("enabled", False)),
            infer_start_location=bool(summary_cfg.get("infer_start_location", True)),
            infer_end_location=bool(summary_cfg.get("infer_end_location", True)),
            start_location=tuple(float(v) for v in start) if start is not None else None,
            end_location=tuple(float(v) for v in end) if end is not None else None,
            success_radius=float(summary_cfg.get("success_radius", 2.0)),
            snap_tolerance=float(summary_cfg.get("snap_tolerance", 100.0)),
            categories=tuple(str(c) for c in summary_cfg.get("categories", []) or []),
            waypoint_nodes=navigation_cfg.get("nodes"),
            waypoint_edges=navigation_cfg.get("edges"),
        )
        if config.enabled:
            config.validate()
        return config
