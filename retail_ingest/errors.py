from __future__ import annotations

"""Error taxonomy for the ingestion pipeline.

- StructuralError: ファイル全体を中断 (シート/列欠落、ヘッダ行なし、デコード失敗)
- ValidationError: 行単位。記録してスキップ、バッチは継続
- PersistenceError: レコード単位の書き込み失敗。failed としてカウント、バッチは継続

ReconciliationDiscrepancy is deliberately *not* an exception; see
retail_ingest.models.records.
"""

__all__ = [
    "IngestError",
    "StructuralError",
    "ValidationError",
    "MissingFieldError",
    "InvalidFieldError",
    "PersistenceError",
]


class IngestError(Exception):
    """Base class for all ingestion errors."""


class StructuralError(IngestError):
    """Raised when a file cannot yield any records (missing sheet/columns/header)."""


class ValidationError(IngestError):
    """Per-row validation failure.

    Attributes:
        row_number: 1-based data row number within its sheet
        field: canonical field name that failed
        sheet: source sheet name (may be empty for single-sheet formats)
    """

    error_type = "VALIDATION_ERROR"

    def __init__(self, row_number: int, field: str, message: str, sheet: str = "") -> None:
        super().__init__(message)
        self.row_number = row_number
        self.field = field
        self.sheet = sheet


class MissingFieldError(ValidationError):
    error_type = "MISSING_FIELD"

    def __init__(self, row_number: int, field: str, sheet: str = "") -> None:
        super().__init__(
            row_number, field, f"Row {row_number}: Missing required field '{field}'", sheet
        )


class InvalidFieldError(ValidationError):
    error_type = "INVALID_FIELD"

    def __init__(self, row_number: int, field: str, value: object, sheet: str = "") -> None:
        super().__init__(
            row_number, field, f"Row {row_number}: Invalid {field} format '{value}'", sheet
        )
        self.value = value


class PersistenceError(IngestError):
    """Raised by a store when a single record write fails."""
