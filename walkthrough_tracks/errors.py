"""Exception types raised by the walkthrough analysis pipeline.

Configuration and schema problems abort a run. ``PathNotFound`` is raised by
shortest-path providers and is handled per trajectory by the summary step.
"""

from __future__ import annotations

from typing import Sequence


class WalkthroughError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(WalkthroughError, ValueError):
    """Invalid or mutually exclusive configuration options."""


class MissingColumnError(WalkthroughError, KeyError):
    """A required column is absent from the input table."""

    def __init__(self, column: str, available: Sequence[str]) -> None:
        self.column = column
        self.available = list(available)
        super().__init__(
            f"Column {column} not found in data file. Possible columns are: {', '.join(self.available)}"
        )

    def __str__(self) -> str:
        return str(self.args[0])


class MalformedValueError(WalkthroughError, ValueError):
    """A cell that should hold a number could not be parsed."""

    def __init__(self, column: str, value: str, row: int | None = None) -> None:
        self.column = column
        self.value = value
        self.row = row
        location = f" (row {row})" if row is not None else ""
        super().__init__(f"Non-numeric value {value!r} in column {column}{location}")


class ColumnCountMismatchError(WalkthroughError, ValueError):
    """A data row does not have as many fields as the header."""


class PathNotFound(WalkthroughError):
    """No navigable path connects the requested endpoints."""
