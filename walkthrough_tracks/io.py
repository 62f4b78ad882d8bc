"""Input/output helpers for the walkthrough analysis pipeline.

Covers delimited table reading and writing, unique output filenames, and the
processed density and summary files.
"""

from __future__ import annotations

import csv
import logging
import re
from pathlib import Path
from typing import List, Sequence, Tuple

import numpy as np
import pandas as pd

from walkthrough_tracks.errors import ColumnCountMismatchError

NUMBER_FORMAT = "%.3f"


def read_table_frame(path: str | Path, delimiter: str = ";") -> pd.DataFrame:
    """Read a delimited file into a DataFrame whose cells are all strings.

    Values are taken verbatim; no quoting, NA detection or type conversion is
    applied. Blank lines are skipped. Every row must have as many fields as the
    header.
    """

    path = Path(path)
    try:
        raw = pd.read_csv(
            path,
            sep=re.escape(delimiter) if len(delimiter) > 1 else delimiter,
            header=None,
            dtype=str,
            keep_default_na=False,
            quoting=csv.QUOTE_NONE,
            skip_blank_lines=True,
            encoding="utf-8-sig",
            engine="python",
        )
    except pd.errors.EmptyDataError as exc:
        raise ColumnCountMismatchError(f"{path} does not contain a header row.") from exc
    except pd.errors.ParserError as exc:
        raise ColumnCountMismatchError(f"{path} has a row with more fields than the header: {exc}") from exc

    columns = raw.iloc[0].tolist()
    df = raw.iloc[1:].reset_index(drop=True)
    # short rows are padded with missing values, which never appear otherwise
    short = df.isna().any(axis=1)
    if short.any():
        row = int(short.idxmax())
        fields = int(df.iloc[row].notna().sum())
        raise ColumnCountMismatchError(
            f"Row {row} of {path} has {fields} fields but the header has {len(columns)}."
        )
    df.columns = columns

    logging.info("Read %d rows with %d columns from %s", len(df), len(columns), path)
    return df


def read_table(path: str | Path, delimiter: str = ";") -> Tuple[List[str], List[List[str]]]:
    """Read a delimited text file into its header and string rows."""

    df = read_table_frame(path, delimiter=delimiter)
    return [str(col) for col in df.columns], df.values.tolist()


def write_table(
    path: str | Path,
    columns: Sequence[str],
    rows: Sequence[Sequence[str]],
    delimiter: str = ";",
) -> Path:
    """Write a header and string rows as a delimited text file."""

    for index, row in enumerate(rows):
        if len(row) != len(columns):
            raise ColumnCountMismatchError(
                f"Number of column names ({len(columns)}) does not match number of columns "
                f"in data ({len(row)}) at row {index}."
            )
    frame = pd.DataFrame([list(map(str, row)) for row in rows], columns=list(columns), dtype=str)
    return save_dataframe(frame, path, delimiter=delimiter)


def save_dataframe(df: pd.DataFrame, path: str | Path, delimiter: str = ";") -> Path:
    """Persist a DataFrame as a delimited file without quoting."""

    clashes = [str(col) for col in df.columns if delimiter in str(col)]
    for col in df.columns:
        if df[col].astype(str).str.contains(delimiter, regex=False).any():
            clashes.append(str(col))
    if clashes:
        raise ValueError(f"Values in columns {clashes} contain the delimiter {delimiter!r}.")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, sep=delimiter, index=False, quoting=csv.QUOTE_NONE, lineterminator="\n")
    logging.info("Saved %d rows to %s", len(df), path)
    return path


def generate_unique_filename(directory: str | Path, file_name: str) -> Path:
    """Return a path in ``directory`` that does not exist yet.

    The directory is created if needed. When ``file_name`` is taken, the first
    free ``<stem>_<i><suffix>`` with ``i = 0, 1, ...`` is returned instead.
    """

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    path = directory / file_name
    if not path.exists():
        return path

    stem, suffix = Path(file_name).stem, Path(file_name).suffix
    index = 0
    while (directory / f"{stem}_{index}{suffix}").exists():
        index += 1
    return directory / f"{stem}_{index}{suffix}"


def write_density_file(
    path: str | Path,
    points: np.ndarray,
    densities: np.ndarray,
    delimiter: str = ";",
) -> Path:
    """Write one ``x<d>y<d>z<d>density`` line per retained point."""

    points = np.asarray(points, dtype=float).reshape(-1, 3)
    densities = np.asarray(densities, dtype=float).reshape(-1)
    if len(points) != len(densities):
        raise ValueError(f"Got {len(points)} points but {len(densities)} densities.")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savetxt(path, np.column_stack([points, densities]), fmt=NUMBER_FORMAT, delimiter=delimiter)
    logging.info("Saved %d density points to %s", len(points), path)
    return path


def read_density_file(path: str | Path, delimiter: str = ";") -> Tuple[np.ndarray, np.ndarray]:
    """Load a processed density file back into ``(points, densities)``."""

    data = np.loadtxt(path, delimiter=delimiter, ndmin=2)
    if data.size == 0:
        return np.empty((0, 3)), np.empty(0)
    if data.shape[1] != 4:
        raise ColumnCountMismatchError(f"{path} has {data.shape[1]} fields per line, expected 4.")
    return data[:, :3], data[:, 3]
