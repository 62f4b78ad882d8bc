"""Turn raw walkthrough tables into keyed trajectories.

Rows are validated against the configured column bindings, filtered, parsed
to floats and grouped by trajectory key. A key is either the source file name
or a super key built from the configured key columns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, NamedTuple, Sequence, Tuple

import numpy as np
import pandas as pd

from walkthrough_tracks.config import IngestionConfig
from walkthrough_tracks.errors import (
    ColumnCountMismatchError,
    ConfigurationError,
    MalformedValueError,
    MissingColumnError,
)
from walkthrough_tracks.io import read_table_frame

Vector3 = np.ndarray  # shape (3,)

SUPER_KEY_SEPARATOR = ":"

FORWARD = np.array([0.0, 0.0, 1.0])
UP = np.array([0.0, 1.0, 0.0])
RIGHT = np.array([1.0, 0.0, 0.0])


class TrajectoryEntry(NamedTuple):
    position: Vector3
    forward: Vector3
    up: Vector3
    right: Vector3
    timestamp: float


def _frozen(values: np.ndarray) -> np.ndarray:
    values = np.array(values, dtype=float)
    values.setflags(write=False)
    return values


@dataclass(frozen=True)
class Trajectory:
    """Time-ordered pose samples of one walkthrough, stored column-wise."""

    positions: np.ndarray  # (N, 3)
    forward: np.ndarray  # (N, 3)
    up: np.ndarray  # (N, 3)
    right: np.ndarray  # (N, 3)
    timestamps: np.ndarray  # (N,)

    def __post_init__(self) -> None:
        for name in ("positions", "forward", "up", "right"):
            array = _frozen(getattr(self, name)).reshape(-1, 3)
            object.__setattr__(self, name, array)
        object.__setattr__(self, "timestamps", _frozen(self.timestamps).reshape(-1))
        n = len(self.timestamps)
        if any(len(getattr(self, name)) != n for name in ("positions", "forward", "up", "right")):
            raise ValueError("All trajectory arrays must have the same number of samples.")

    def __len__(self) -> int:
        return len(self.timestamps)

    def __iter__(self) -> Iterator[TrajectoryEntry]:
        for i in range(len(self)):
            yield TrajectoryEntry(
                self.positions[i], self.forward[i], self.up[i], self.right[i], float(self.timestamps[i])
            )

    @classmethod
    def from_entries(cls, entries: Iterable[TrajectoryEntry]) -> "Trajectory":
        entries = list(entries)
        if not entries:
            empty = np.empty((0, 3))
            return cls(empty, empty, empty, empty, np.empty(0))
        return cls(
            positions=np.array([e.position for e in entries]),
            forward=np.array([e.forward for e in entries]),
            up=np.array([e.up for e in entries]),
            right=np.array([e.right for e in entries]),
            timestamps=np.array([e.timestamp for e in entries]),
        )


def create_super_key(key_columns: Sequence[str], values: Sequence[str], separator: str = SUPER_KEY_SEPARATOR) -> str:
    """Join ``column=value`` pairs in key-column order."""

    return separator.join(f"{column}={value}" for column, value in zip(key_columns, values))


def deconstruct_super_key(
    super_key: str,
    key_columns: Sequence[str] | None = None,
    separator: str = SUPER_KEY_SEPARATOR,
) -> Tuple[List[str], List[str]]:
    """Split a super key back into its key columns and values.

    With ``key_columns`` the key is matched against the ``column=`` prefixes
    in order, so values may contain the separator or ``=``. Without them the
    key is split on every separator and each part on its first ``=``.
    """

    if not key_columns:
        columns: List[str] = []
        values: List[str] = []
        for component in super_key.split(separator):
            column, _, value = component.partition("=")
            columns.append(column)
            values.append(value)
        return columns, values

    key_columns = list(key_columns)
    values = []
    position = 0
    for index, column in enumerate(key_columns):
        prefix = f"{column}="
        if not super_key.startswith(prefix, position):
            raise ValueError(f"Super key {super_key!r} does not contain {prefix!r} at position {position}.")
        start = position + len(prefix)
        if index + 1 == len(key_columns):
            values.append(super_key[start:])
            break
        marker = f"{separator}{key_columns[index + 1]}="
        end = super_key.find(marker, start)
        if end < 0:
            raise ValueError(f"Super key {super_key!r} has no {marker!r} after column {column}.")
        values.append(super_key[start:end])
        position = end + len(separator)
    return key_columns, values


def required_columns(config: IngestionConfig) -> List[str]:
    """Return the columns a table must contain under ``config``."""

    cols = config.columns
    required = [*cols.position, cols.time]
    if config.use_quaternion:
        required.extend(cols.quaternion)
    else:
        required.extend([*cols.direction, *cols.up, *cols.right])
    if config.multiple_trials_per_file:
        required.extend(config.key_columns)
    required.extend(config.filters)
    return list(dict.fromkeys(required))


def check_columns(columns: Sequence[str], config: IngestionConfig) -> None:
    """Raise :class:`MissingColumnError` for the first absent required column."""

    present = set(columns)
    for column in required_columns(config):
        if column not in present:
            logging.error("Column %s missing. Available columns: %s", column, list(columns))
            raise MissingColumnError(column, columns)


def filter_rows(table: pd.DataFrame, filters: Dict[str, Sequence[str]]) -> pd.DataFrame:
    """Keep rows whose value is allowed by every filter."""

    if not filters:
        return table
    mask = np.ones(len(table), dtype=bool)
    for column, allowed in filters.items():
        mask &= table[column].isin(set(allowed)).to_numpy()
    filtered = table[mask]
    logging.info("Filters retained %d of %d rows", len(filtered), len(table))
    return filtered


def _parse_floats(table: pd.DataFrame, columns: Sequence[str]) -> np.ndarray:
    """Parse string columns to a float matrix, rejecting non-numeric cells."""

    parsed = np.empty((len(table), len(columns)), dtype=float)
    for j, column in enumerate(columns):
        raw = table[column].astype(str)
        values = pd.to_numeric(raw.str.strip(), errors="coerce")
        bad = values.isna() & ~raw.str.strip().str.lower().isin({"nan", "+nan", "-nan"})
        if bad.any():
            row = bad.to_numpy().nonzero()[0][0]
            raise MalformedValueError(column, raw.iloc[row], int(table.index[row]))
        parsed[:, j] = values.to_numpy(dtype=float)
    return parsed


def rotate_canonical_axes(quaternions: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Rotate forward, up and right axes by ``(w, x, y, z)`` quaternions.

    Uses the rotation-matrix form directly, so quaternions are not normalised.
    Returns ``(forward, up, right)`` arrays of shape ``(N, 3)``.
    """

    q = np.asarray(quaternions, dtype=float).reshape(-1, 4)
    w, x, y, z = q[:, 0], q[:, 1], q[:, 2], q[:, 3]

    right = np.column_stack([1.0 - 2.0 * (y * y + z * z), 2.0 * (x * y + w * z), 2.0 * (x * z - w * y)])
    up = np.column_stack([2.0 * (x * y - w * z), 1.0 - 2.0 * (x * x + z * z), 2.0 * (y * z + w * x)])
    forward = np.column_stack([2.0 * (x * z + w * y), 2.0 * (y * z - w * x), 1.0 - 2.0 * (x * x + y * y)])
    return forward, up, right


def ingest_table(
    table: pd.DataFrame,
    config: IngestionConfig,
    source_name: str | None = None,
) -> Dict[str, Trajectory]:
    """Build trajectories from a table of string cells.

    Keys are either ``source_name`` or super keys from ``config.key_columns``.
    The returned dict is ordered by first occurrence of each key and every
    trajectory keeps the input row order.
    """

    config.validate()
    if not config.multiple_trials_per_file and source_name is None:
        raise ConfigurationError("source_name is required when each file holds a single trial.")

    check_columns([str(col) for col in table.columns], config)
    table = filter_rows(table, config.filters)
    if table.empty:
        logging.warning("No rows left for %s after filtering.", source_name or "table")
        return {}

    cols = config.columns
    timestamps = _parse_floats(table, [cols.time])[:, 0]
    positions = _parse_floats(table, cols.position)
    if config.use_quaternion:
        forward, up, right = rotate_canonical_axes(_parse_floats(table, cols.quaternion))
    else:
        forward = _parse_floats(table, cols.direction)
        up = _parse_floats(table, cols.up)
        right = _parse_floats(table, cols.right)

    if config.multiple_trials_per_file:
        key_values = table[list(config.key_columns)].astype(str).to_numpy()
        keys = [create_super_key(config.key_columns, row) for row in key_values]
    else:
        keys = [str(source_name)] * len(table)

    # first-seen order, rows kept in input order within a key
    row_indices: Dict[str, List[int]] = {}
    for i, key in enumerate(keys):
        row_indices.setdefault(key, []).append(i)

    trajectories = {
        key: Trajectory(positions[idx], forward[idx], up[idx], right[idx], timestamps[idx])
        for key, idx in row_indices.items()
    }
    logging.info("Parsed %d rows into %d trajectories", len(table), len(trajectories))
    return trajectories


def ingest(
    rows: Sequence[Sequence[str]],
    column_names: Sequence[str],
    config: IngestionConfig,
    source_name: str | None = None,
) -> Dict[str, Trajectory]:
    """Build trajectories from a header and raw string rows."""

    for index, row in enumerate(rows):
        if len(row) != len(column_names):
            raise ColumnCountMismatchError(
                f"Row {index} has {len(row)} fields but the header has {len(column_names)}."
            )
    table = pd.DataFrame([list(row) for row in rows], columns=list(column_names), dtype=str)
    return ingest_table(table, config, source_name=source_name)


def list_input_files(path: str | Path, config: IngestionConfig) -> List[Path]:
    """Resolve the files to read: every ``*.csv`` in a directory or a single file."""

    path = Path(path)
    if config.use_all_files_in_directory:
        files = sorted(path.glob("*.csv"))
        if not files:
            raise FileNotFoundError(f"No CSV files found in {path}")
        return files
    if not path.is_file():
        raise FileNotFoundError(f"Raw data file {path} does not exist")
    return [path]


def ingest_files(paths: Iterable[str | Path], config: IngestionConfig) -> Dict[str, Trajectory]:
    """Read and ingest several files into one trajectory map.

    In single-trial mode each file contributes one trajectory keyed by its
    file name; rows for a key seen in an earlier file are appended.
    """

    config.validate()
    merged: Dict[str, Trajectory] = {}
    for path in paths:
        path = Path(path)
        table = read_table_frame(path, delimiter=config.delimiter)
        for key, trajectory in ingest_table(table, config, source_name=path.name).items():
            if key in merged:
                merged[key] = Trajectory.from_entries([*merged[key], *trajectory])
            else:
                merged[key] = trajectory
    logging.info("Ingested %d trajectories", len(merged))
    return merged
