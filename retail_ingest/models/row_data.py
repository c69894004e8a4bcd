from __future__ import annotations

from dataclasses import dataclass
from typing import Any

"""RowData model: one spreadsheet row after header normalization.

RowData is the NormalizedRow of the pipeline: every key in ``values`` is a
canonical field name produced by retail_ingest.excel.headers.
"""

__all__ = [
    "RowData",
    "RowResult",
]


@dataclass(frozen=True)
class RowData:
    """Logical representation of a single data row after header normalization.

    row_number is 1-based and counts data rows only (the header row is not
    row 1), so error messages match what a user sees below the header.
    """
    row_number: int  # 1-based data row number within the sheet
    values: dict[str, Any]  # canonical field name -> cell value
    raw_values: dict[str, Any] | None = None  # original header -> value (debug 用)
    sheet: str = ""  # source sheet name

    def get(self, field: str, default: Any = None) -> Any:
        return self.values.get(field, default)


@dataclass(frozen=True)
class RowResult:
    """Outcome of validating one RowData: either typed values or an error."""
    row_number: int
    values: dict[str, Any] | None = None
    error: Exception | None = None  # ValidationError (retail_ingest.errors)
    sheet: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None
