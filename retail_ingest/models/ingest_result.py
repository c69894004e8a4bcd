from __future__ import annotations

import json
from dataclasses import dataclass, field

from .records import ReconciliationDiscrepancy

"""Result models for one ingestion run.

IngestBatchResult is what the caller gets back; UploadManifest is the single
summary row written to the upload-history ledger; ProgressSnapshot is handed
to the progress callback after each batch.
"""

__all__ = [
    "SkipReason",
    "DuplicateSample",
    "IngestBatchResult",
    "ProgressSnapshot",
    "UploadManifest",
]


class SkipReason:
    ALREADY_IN_DATABASE = "already_in_database"
    DUPLICATE_IN_FILE = "duplicate_in_file"


@dataclass(frozen=True)
class DuplicateSample:
    """One skipped record, kept for diagnostics (capped sample)."""
    reason: str  # SkipReason.*
    sheet: str
    row: int
    key: tuple[object, ...]

    def describe(self) -> str:
        where = f"{self.sheet} row {self.row}" if self.sheet else f"row {self.row}"
        if self.reason == SkipReason.ALREADY_IN_DATABASE:
            return f"{where}: already in database"
        return f"{where}: duplicate within this file"


@dataclass
class IngestBatchResult:
    """Outcome of one ingestion run.

    Counts are always exact; ``errors`` / ``duplicates`` / ``discrepancies`` are
    bounded samples (first N) so the payload stays small.
    """
    file_name: str
    upload_type: str
    mode: str
    total: int = 0
    uploaded: int = 0
    skipped: int = 0
    failed: int = 0
    lines: int = 0  # receiving lines written alongside vouchers
    mismatches: int = 0  # vouchers whose qb_total disagrees with corrected_total
    errors: list[str] = field(default_factory=list)
    duplicates: list[DuplicateSample] = field(default_factory=list)
    discrepancies: list[ReconciliationDiscrepancy] = field(default_factory=list)
    stopped: bool = False
    elapsed_seconds: float = 0.0

    @property
    def processed(self) -> int:
        return self.uploaded + self.skipped + self.failed

    def to_dict(self) -> dict[str, object]:
        """JSON-friendly view (Decimal/date rendered as strings)."""
        return {
            "success": True,
            "file_name": self.file_name,
            "upload_type": self.upload_type,
            "mode": self.mode,
            "total": self.total,
            "uploaded": self.uploaded,
            "skipped": self.skipped,
            "failed": self.failed,
            "lines": self.lines,
            "mismatches": self.mismatches,
            "errors": list(self.errors),
            "duplicates": [d.describe() for d in self.duplicates],
            "discrepancies": [d.describe() for d in self.discrepancies],
            "stopped": self.stopped,
        }


@dataclass(frozen=True)
class ProgressSnapshot:
    """Progress payload handed to the progress callback after each batch."""
    processed: int
    total: int
    uploaded: int
    failed: int
    skipped: int

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100
        return round(self.processed * 100 / self.total)


@dataclass(frozen=True)
class UploadManifest:
    """Summary row for the upload-history ledger."""
    file_name: str
    upload_type: str
    upload_mode: str
    total_records: int
    successful_records: int
    failed_records: int
    skipped_records: int
    errors: str  # JSON 文字列 (先頭 N 件のみ)

    @staticmethod
    def from_result(result: IngestBatchResult, all_errors: list[str], limit: int) -> UploadManifest:
        return UploadManifest(
            file_name=result.file_name or "unknown.xlsx",
            upload_type=result.upload_type,
            upload_mode=result.mode,
            total_records=result.total,
            successful_records=result.uploaded,
            failed_records=result.failed,
            skipped_records=result.skipped,
            errors=json.dumps(all_errors[:limit], ensure_ascii=False),
        )
