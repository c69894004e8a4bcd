from __future__ import annotations

import fnmatch
import io
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd

from ..errors import StructuralError
from ..models.config_models import FormatConfig
from .cell_range import CellGrid, detect_header_row

"""Workbook decode collaborator (pandas + openpyxl).

read_workbook() is the only code that touches the binary file. Sheets are read
raw (header=None) and handed on as CellGrid; header handling happens later in
retail_ingest.excel.headers once banner rows have been stripped.
"""

__all__ = [
    "SheetGrid",
    "read_workbook",
    "select_sheets",
    "apply_format",
]


@dataclass(frozen=True)
class SheetGrid:
    name: str
    grid: CellGrid


def _dataframe_to_grid(df: pd.DataFrame) -> CellGrid:
    cells: dict[tuple[int, int], Any] = {}
    for r in range(df.shape[0]):
        # tolist() で numpy スカラー -> Python スカラーへ変換
        for c, val in enumerate(df.iloc[r].tolist()):
            if val is None:
                continue
            try:
                if pd.isna(val):
                    continue
            except (TypeError, ValueError):
                pass
            cells[(r, c)] = val
    return CellGrid(cells, df.shape[0], df.shape[1])


def read_workbook(
    source: Path | bytes,
    target_sheets: Iterable[str] | None = None,
    keep_na_strings: Iterable[str] | None = None,
) -> list[SheetGrid]:
    """Decode a workbook into raw sheets, in workbook order.

    Parameters
    ----------
    source: ファイルパス または アップロードされた bytes
    target_sheets: 対象シート制限 (None なら全シート)
    keep_na_strings: pandas 既定の NaN 変換から除外する文字列 (例: ['NA'])

    Raises
    ------
    StructuralError: the payload is not a readable workbook
    """
    import pandas._libs.parsers as parsers

    if keep_na_strings:
        na_values = list(parsers.STR_NA_VALUES - set(keep_na_strings))
        keep_default_na = False
    else:
        na_values = None
        keep_default_na = True

    handle: Any = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else source
    try:
        xls = pd.ExcelFile(handle)
    except Exception as e:
        raise StructuralError(f"unreadable workbook: {e}") from e

    wanted = set(target_sheets) if target_sheets is not None else None
    sheets: list[SheetGrid] = []
    for name in xls.sheet_names:
        if wanted is not None and str(name) not in wanted:
            continue
        df = xls.parse(name, header=None, keep_default_na=keep_default_na, na_values=na_values)
        sheets.append(SheetGrid(name=str(name), grid=_dataframe_to_grid(df)))
    if not sheets:
        raise StructuralError("workbook contains no sheets")
    return sheets


def select_sheets(sheets: list[SheetGrid], pattern: str | None, first_only: bool = False) -> list[SheetGrid]:
    """Filter sheets by an fnmatch pattern (case-sensitive).

    pattern=None keeps every sheet; first_only keeps only the first match.
    """
    if pattern is None:
        chosen = list(sheets)
    else:
        chosen = [s for s in sheets if fnmatch.fnmatchcase(s.name, pattern)]
    return chosen[:1] if first_only else chosen


def apply_format(grid: CellGrid, fmt: FormatConfig) -> CellGrid:
    """Apply the configured structural edits so that row 0 is the header row."""
    if fmt.auto_detect_header:
        grid = grid.delete_rows(detect_header_row(grid))
    grid = grid.delete_rows(fmt.banner_rows)
    grid = grid.delete_trailing_rows(fmt.footer_rows)
    grid = grid.delete_columns(fmt.drop_columns)
    for ins in fmt.insert_columns:
        grid = grid.insert_columns_at(ins.index, len(ins.headers))
        grid = grid.set_row_values(0, min(max(ins.index, 0), grid.n_cols - len(ins.headers)), ins.headers)
    return grid
