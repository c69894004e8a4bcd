from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

"""Sparse 2-D cell grid with pure structural edits.

Exports arrive with banner rows above the header, footer rows below the data
and columns nobody wants. CellGrid strips those before any parsing happens.

- セルは (row, col) タプルをキーとする単一 dict。文字列セルアドレス ("B7") は使わない
- すべての操作は新しい CellGrid を返す (入力は不変、リトライ可能)
- 不正な設定 (範囲外列など) はエラーにせず no-op として扱う
"""

__all__ = [
    "CellGrid",
    "detect_header_row",
]


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and value.strip() == ""


@dataclass(frozen=True)
class CellGrid:
    """Rectangular cell range addressed contiguously from (0, 0).

    ``n_rows`` / ``n_cols`` are the extent of the range; ``cells`` only holds
    non-empty positions inside it.
    """
    cells: Mapping[tuple[int, int], Any] = field(default_factory=dict)
    n_rows: int = 0
    n_cols: int = 0

    @staticmethod
    def from_range(
        cells: Mapping[tuple[int, int], Any],
        row_start: int,
        row_end: int,
        col_start: int,
        col_end: int,
    ) -> CellGrid:
        """Build a grid from an inclusive range, re-addressing it to (0, 0).

        Cells outside the declared range are dropped.
        """
        if row_end < row_start or col_end < col_start:
            return CellGrid()
        out: dict[tuple[int, int], Any] = {}
        for (r, c), value in cells.items():
            if row_start <= r <= row_end and col_start <= c <= col_end and not _is_blank(value):
                out[(r - row_start, c - col_start)] = value
        return CellGrid(out, row_end - row_start + 1, col_end - col_start + 1)

    @staticmethod
    def from_rows(rows: Sequence[Sequence[Any]]) -> CellGrid:
        cells: dict[tuple[int, int], Any] = {}
        width = 0
        for r, row in enumerate(rows):
            width = max(width, len(row))
            for c, value in enumerate(row):
                if not _is_blank(value):
                    cells[(r, c)] = value
        return CellGrid(cells, len(rows), width)

    @property
    def is_empty(self) -> bool:
        return self.n_rows == 0 or self.n_cols == 0

    def get(self, row: int, col: int) -> Any:
        return self.cells.get((row, col))

    def row_values(self, row: int) -> list[Any]:
        return [self.cells.get((row, c)) for c in range(self.n_cols)]

    def iter_rows(self) -> Iterator[list[Any]]:
        for r in range(self.n_rows):
            yield self.row_values(r)

    def delete_rows(self, n: int) -> CellGrid:
        """Remove the first ``n`` rows. More than available yields an empty range."""
        if n <= 0:
            return self
        if n >= self.n_rows:
            return CellGrid({}, 0, self.n_cols)
        cells = {(r - n, c): v for (r, c), v in self.cells.items() if r >= n}
        return CellGrid(cells, self.n_rows - n, self.n_cols)

    def delete_trailing_rows(self, n: int) -> CellGrid:
        """Remove the last ``n`` rows (export footers / grand totals)."""
        if n <= 0:
            return self
        keep = max(0, self.n_rows - n)
        cells = {(r, c): v for (r, c), v in self.cells.items() if r < keep}
        return CellGrid(cells, keep, self.n_cols)

    def delete_columns(self, indices: Iterable[int]) -> CellGrid:
        """Remove the given column indices, keeping the rest in order.

        Indices outside the current range are ignored.
        """
        doomed = {i for i in indices if 0 <= i < self.n_cols}
        if not doomed:
            return self
        remap: dict[int, int] = {}
        for c in range(self.n_cols):
            if c not in doomed:
                remap[c] = len(remap)
        cells = {(r, remap[c]): v for (r, c), v in self.cells.items() if c in remap}
        return CellGrid(cells, self.n_rows, len(remap))

    def insert_columns_at(self, index: int, count: int) -> CellGrid:
        """Shift every cell at or after ``index`` right by ``count`` columns.

        An index past the right edge appends the new columns at the end.
        """
        if count <= 0:
            return self
        index = min(max(index, 0), self.n_cols)
        cells = {
            (r, c + count if c >= index else c): v for (r, c), v in self.cells.items()
        }
        return CellGrid(cells, self.n_rows, self.n_cols + count)

    def set_row_values(self, row: int, col_start: int, values: Sequence[Any]) -> CellGrid:
        """Write literal values into ``row`` starting at ``col_start``.

        Used to label columns created by insert_columns_at.
        """
        if not values or row < 0 or row >= self.n_rows:
            return self
        cells = dict(self.cells)
        for offset, value in enumerate(values):
            col = col_start + offset
            if col >= self.n_cols:
                break
            if _is_blank(value):
                cells.pop((row, col), None)
            else:
                cells[(row, col)] = value
        return CellGrid(cells, self.n_rows, self.n_cols)


def detect_header_row(grid: CellGrid, scan: int = 10, min_cells: int = 3) -> int:
    """Return the index of the first row that looks like a header.

    A header row has at least ``min_cells`` non-empty text cells. Only the
    first ``scan`` rows are considered; 0 when nothing qualifies.
    """
    for r in range(min(grid.n_rows, scan)):
        text_cells = [
            v for v in grid.row_values(r) if isinstance(v, str) and v.strip()
        ]
        if len(text_cells) >= min_cells:
            return r
    return 0
