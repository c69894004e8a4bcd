from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""One line of the ingestion error log.

Rows that fail validation or whose write is rejected by the store each get an
ErrorRecord; so do problems with the workbook as a whole (no usable sheet,
manifest write refused), which carry row -1 and an empty sheet name.
"""

__all__ = [
    "ErrorRecord",
    "FILE_LEVEL_ROW",
]

FILE_LEVEL_ROW = -1


@dataclass(frozen=True)
class ErrorRecord:
    """A failed record (or file) as written to ``logs/errors-*.log``.

    The JSON keys are exactly the field names below, in this order.
    """
    timestamp: str  # UTC, "...Z"
    file: str  # アップロードされたファイル名
    sheet: str
    row: int  # データ行番号 (1 始まり)。ファイル単位のエラーは -1
    error_type: str  # MISSING_FIELD / INVALID_FIELD / PERSISTENCE_ERROR / STRUCTURAL_ERROR
    message: str

    @staticmethod
    def create(file: str, sheet: str, row: int, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            sheet=sheet,
            row=row,
            error_type=error_type,
            message=message,
        )

    @staticmethod
    def for_file(file: str, error_type: str, message: str) -> ErrorRecord:
        """Record for a failure that no single row is responsible for."""
        return ErrorRecord.create(file, "", FILE_LEVEL_ROW, error_type, message)

    @property
    def is_file_level(self) -> bool:
        return self.row == FILE_LEVEL_ROW

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
