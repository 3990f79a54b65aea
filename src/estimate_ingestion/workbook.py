"""Dataclasses representing an uploaded workbook held in memory."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Cell:
    """A single cell with its original 0-based position.

    Values are whatever the container produced: strings, numbers, None for
    empty cells, and occasionally dates or booleans (treated as non-numeric).
    """

    value: Any
    row: int
    column: int

    @property
    def is_blank(self) -> bool:
        if self.value is None:
            return True
        return isinstance(self.value, str) and not self.value.strip()

    @property
    def text(self) -> str:
        """Cell value as stripped text, empty string for blank cells."""
        if self.value is None:
            return ""
        return str(self.value).strip()


@dataclass(frozen=True)
class Sheet:
    """One worksheet as a rectangular grid of cells."""

    name: str
    rows: tuple[tuple[Cell, ...], ...]
    row_count: int
    column_count: int

    def cell(self, row: int, column: int) -> Cell:
        """Return the cell at (row, column), blank when out of range."""
        if 0 <= row < self.row_count and 0 <= column < self.column_count:
            return self.rows[row][column]
        return Cell(value=None, row=row, column=column)

    def is_blank_row(self, row: int) -> bool:
        return all(cell.is_blank for cell in self.rows[row])

    @classmethod
    def from_values(cls, name: str, values: list[list[Any]]) -> Sheet:
        """Build a sheet from raw row values.

        Rows are padded to the widest row and trailing fully blank rows are
        dropped, so `row_count` is the last row carrying data.
        """
        width = max((len(row) for row in values), default=0)
        grid = [
            tuple(
                Cell(value=row[c] if c < len(row) else None, row=r, column=c)
                for c in range(width)
            )
            for r, row in enumerate(values)
        ]
        while grid and all(cell.is_blank for cell in grid[-1]):
            grid.pop()
        return cls(
            name=name,
            rows=tuple(grid),
            row_count=len(grid),
            column_count=width if grid else 0,
        )


@dataclass(frozen=True)
class Workbook:
    """An uploaded workbook: ordered sheets plus container metadata."""

    sheets: tuple[Sheet, ...]
    source_format: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def sheet_names(self) -> list[str]:
        return [sheet.name for sheet in self.sheets]

    @property
    def cell_count(self) -> int:
        return sum(sheet.row_count * sheet.column_count for sheet in self.sheets)

    def get_sheet(self, name: str) -> Sheet | None:
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        return None
