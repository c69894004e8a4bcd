from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from ..errors import PersistenceError, StructuralError, ValidationError
from ..excel.headers import rows_from_grid
from ..excel.reader import SheetGrid, apply_format, read_workbook, select_sheets
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import FormatConfig, IngestConfig
from ..models.error_record import ErrorRecord
from ..models.ingest_result import (
    DuplicateSample,
    IngestBatchResult,
    ProgressSnapshot,
    SkipReason,
    UploadManifest,
)
from ..models.records import (
    ItemListRecord,
    ReceivingVoucherRecord,
    ReconciliationDiscrepancy,
    SalesTransactionRecord,
    UploadMode,
    UploadType,
)
from ..models.row_data import RowData
from ..db.store import IngestStore
from .control import ControlToken
from .dedup import Candidate, compute_existing, partition
from .sales_parser import SALES_DETAIL_PATTERN, ParseStats, parse_sales_sheet
from .validator import validate_rows
from .voucher_reconciler import reconcile_sheet

"""Batch ingestion orchestration.

ingest_file() is the single entry point: one uploaded spreadsheet in, one
IngestBatchResult out. Pipeline per upload type:

- item-list         : sheet -> rows -> validate -> dedup -> persist
- sales-transactions: Sales Detail* sheets -> rows -> hierarchy parse -> validate -> dedup -> persist
- receiving-voucher : sheets -> rows -> reconcile -> validate header -> dedup -> persist

件数の扱い:
- total    = 検証失敗 + 検証成功 (重複含む)
- failed   = 検証失敗 + 書き込み失敗
- skipped  = DB 既存 + ファイル内重複 + upsert で変更なしの売上行
- uploaded = 書き込み成功
StructuralError 以外はすべて結果に集計し、例外にはしない。
"""

__all__ = [
    "ProgressCallback",
    "ingest_file",
]

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressSnapshot], None]

_ITEM_REQUIRED = ("item_number", "vendor_name", "item_name")
_ITEM_SCHEMA = {
    "avail_qty": "integer",
    "hq_qty": "integer",
    "gm_qty": "integer",
    "hm_qty": "integer",
    "mm_qty": "integer",
    "nm_qty": "integer",
    "pm_qty": "integer",
    "lm_qty": "integer",
    "last_rcvd": "date",
    "creation_date": "date",
    "last_sold": "date",
    "order_cost": "number",
    "selling_price": "number",
}
_ITEM_FIELDS = frozenset(f.name for f in fields(ItemListRecord))

_SALES_REQUIRED = ("store", "receipt_number", "sku", "item_name", "price")
_SALES_SCHEMA = {"date": "date", "price": "number"}

_VOUCHER_REQUIRED = ("voucher_number", "date", "store")
_VOUCHER_SCHEMA = {"date": "date"}


@dataclass
class _Extraction:
    candidates: list[Candidate] = field(default_factory=list)
    failures: list[ValidationError] = field(default_factory=list)
    discrepancies: list[ReconciliationDiscrepancy] = field(default_factory=list)


def _bounded(message: str, limit: int) -> str:
    if len(message) <= limit:
        return message
    return message[: limit - 3] + "..."


def _sheet_rows(sheet: SheetGrid, fmt: FormatConfig) -> tuple[list[str], list[RowData]]:
    grid = apply_format(sheet.grid, fmt)
    return rows_from_grid(grid, sheet=sheet.name, overrides=fmt.header_overrides)


def _missing_columns(columns: Sequence[str], fmt: FormatConfig) -> list[str]:
    return sorted(fmt.required_columns - set(columns))


# ---------------------------------------------------------------------------
# per-type extraction
# ---------------------------------------------------------------------------

def _extract_item_list(sheets: list[SheetGrid], fmt: FormatConfig, file_name: str) -> _Extraction:
    chosen = select_sheets(sheets, fmt.sheet_pattern, first_only=True)
    if not chosen:
        raise StructuralError(f"no sheet matches pattern '{fmt.sheet_pattern}'")
    sheet = chosen[0]
    columns, rows = _sheet_rows(sheet, fmt)
    missing = _missing_columns(columns, fmt)
    if missing:
        raise StructuralError(f"sheet '{sheet.name}': missing expected columns {missing}")

    out = _Extraction()
    for res in validate_rows(rows, _ITEM_REQUIRED, _ITEM_SCHEMA):
        if not res.ok:
            out.failures.append(res.error)
            continue
        values = {k: v for k, v in res.values.items() if k in _ITEM_FIELDS}
        # 在庫数の空欄は 0
        for name, field_type in _ITEM_SCHEMA.items():
            if field_type == "integer" and values.get(name) is None:
                values[name] = 0
        values["file_name"] = file_name
        out.candidates.append(Candidate(ItemListRecord(**values), res.row_number, res.sheet))
    return out


def _extract_sales(sheets: list[SheetGrid], fmt: FormatConfig) -> _Extraction:
    pattern = fmt.sheet_pattern or SALES_DETAIL_PATTERN
    chosen = select_sheets(sheets, pattern)
    if not chosen:
        raise StructuralError(f"no '{pattern}' sheet in workbook")

    out = _Extraction()
    for sheet in chosen:
        columns, rows = _sheet_rows(sheet, fmt)
        missing = _missing_columns(columns, fmt)
        if missing:
            raise StructuralError(f"sheet '{sheet.name}': missing expected columns {missing}")
        stats = ParseStats()
        line_rows = parse_sales_sheet(rows, sheet.name, stats)
        for res in validate_rows(line_rows, _SALES_REQUIRED, _SALES_SCHEMA):
            if not res.ok:
                out.failures.append(res.error)
                continue
            v = res.values
            record = SalesTransactionRecord(
                date=v.get("date"),
                store=v["store"],
                receipt_number=v["receipt_number"],
                sku=v["sku"],
                item_name=v["item_name"],
                transaction_store_type=v.get("transaction_store_type"),
                price=v["price"],
                sheet=sheet.name,
            )
            out.candidates.append(Candidate(record, res.row_number, sheet.name))
    return out


def _extract_vouchers(sheets: list[SheetGrid], fmt: FormatConfig, file_name: str) -> _Extraction:
    chosen = select_sheets(sheets, fmt.sheet_pattern)
    if not chosen:
        raise StructuralError(f"no sheet matches pattern '{fmt.sheet_pattern}'")

    out = _Extraction()
    usable = 0
    for sheet in chosen:
        columns, rows = _sheet_rows(sheet, fmt)
        missing = _missing_columns(columns, fmt)
        if missing:
            if fmt.sheet_pattern is not None:
                raise StructuralError(f"sheet '{sheet.name}': missing expected columns {missing}")
            # 全シート走査時は伝票形式でないシート (集計表など) を読み飛ばす
            logger.warning("sheet=%s skipped: missing columns %s", sheet.name, missing)
            continue
        usable += 1
        vouchers = reconcile_sheet(rows, sheet.name)
        headers = [v.header for v in vouchers]
        for voucher, res in zip(vouchers, validate_rows(headers, _VOUCHER_REQUIRED, _VOUCHER_SCHEMA), strict=True):
            if not res.ok:
                out.failures.append(res.error)
                continue
            v = res.values
            record = ReceivingVoucherRecord(
                voucher_number=v["voucher_number"],
                date=v["date"],
                store=v["store"],
                vendor=v.get("vendor_name"),
                type=voucher.voucher_type,
                qb_total=voucher.qb_total,
                corrected_total=voucher.corrected_total,
                total_qty=voucher.total_qty,
                lines=voucher.lines,
                time=v.get("time"),
                file_name=file_name,
            )
            if record.has_mismatch:
                out.discrepancies.append(ReconciliationDiscrepancy.from_voucher(record, sheet.name))
            out.candidates.append(Candidate(record, res.row_number, sheet.name))
    if usable == 0:
        missing = sorted(fmt.required_columns)
        raise StructuralError(f"no sheet carries the voucher columns {missing}")
    return out


def _extract(
    sheets: list[SheetGrid], upload_type: UploadType, fmt: FormatConfig, file_name: str
) -> _Extraction:
    if upload_type is UploadType.ITEM_LIST:
        return _extract_item_list(sheets, fmt, file_name)
    if upload_type is UploadType.SALES_TRANSACTIONS:
        return _extract_sales(sheets, fmt)
    return _extract_vouchers(sheets, fmt, file_name)


# ---------------------------------------------------------------------------
# entry point
# ---------------------------------------------------------------------------

class _Run:
    """Mutable bookkeeping for one ingest_file() call."""

    def __init__(
        self,
        result: IngestBatchResult,
        config: IngestConfig,
        error_log: ErrorLogBuffer | None,
        progress: ProgressCallback | None,
    ) -> None:
        self.result = result
        self.config = config
        self.error_log = error_log
        self.progress = progress
        self.all_errors: list[str] = []

    def fail(self, sheet: str, row: int, error_type: str, message: str) -> None:
        message = _bounded(message, self.config.message_max_length)
        self.result.failed += 1
        if len(self.result.errors) < self.config.error_sample_size:
            self.result.errors.append(message)
        if len(self.all_errors) < self.config.manifest_error_limit:
            self.all_errors.append(message)
        if self.error_log is not None:
            self.error_log.append(
                ErrorRecord.create(self.result.file_name, sheet, row, error_type, message)
            )

    def skip(self, cand: Candidate, reason: str) -> None:
        self.result.skipped += 1
        if len(self.result.duplicates) < self.config.duplicate_sample_size:
            self.result.duplicates.append(DuplicateSample(reason, cand.sheet, cand.row_number, cand.key))

    def notify(self) -> None:
        if self.progress is None:
            return
        r = self.result
        self.progress(ProgressSnapshot(r.processed, r.total, r.uploaded, r.failed, r.skipped))


def _should_stop(control: ControlToken | None) -> bool:
    if control is None:
        return False
    if control.is_paused():
        logger.info("paused; waiting for resume")
        control.wait_while_paused()
    return control.is_stopped()


def ingest_file(
    source: Path | bytes,
    upload_type: UploadType | str,
    *,
    store: IngestStore,
    mode: UploadMode | str = UploadMode.INITIAL,
    config: IngestConfig | None = None,
    control: ControlToken | None = None,
    progress: ProgressCallback | None = None,
    file_name: str | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> IngestBatchResult:
    """Ingest one spreadsheet into ``store``.

    Args:
        source: path to the workbook or its raw bytes (web upload)
        upload_type: item-list | sales-transactions | receiving-voucher
        store: persistence collaborator (IngestStore)
        mode: initial (skip keys already stored) | weekly_update (upsert)
        config: IngestConfig; defaults when None
        control: ControlToken polled between records (pause / stop)
        progress: called with a ProgressSnapshot after each batch
        file_name: name recorded in results / manifest (defaults to the path name)
        error_log: ErrorLogBuffer receiving one ErrorRecord per failure

    Returns:
        IngestBatchResult. A run where every record failed is still a result.

    Raises:
        StructuralError: the file cannot yield records (unreadable, missing
            sheet or columns)
        PersistenceError: the existence check itself failed
    """
    started = time.perf_counter()
    upload_type = UploadType(upload_type)
    mode = UploadMode(mode)
    config = config or IngestConfig.defaults()
    if file_name is None:
        file_name = source.name if isinstance(source, Path) else "upload.xlsx"
    fmt = config.format_for(upload_type)

    logger.info("ingest file=%s type=%s mode=%s", file_name, upload_type.value, mode.value)
    try:
        sheets = read_workbook(source, keep_na_strings=fmt.keep_na_strings or None)
        extraction = _extract(sheets, upload_type, fmt, file_name)
    except StructuralError as e:
        if error_log is not None:
            error_log.append(ErrorRecord.for_file(file_name, "STRUCTURAL_ERROR", str(e)))
        raise

    result = IngestBatchResult(file_name=file_name, upload_type=upload_type.value, mode=mode.value)
    result.total = len(extraction.candidates) + len(extraction.failures)
    result.mismatches = len(extraction.discrepancies)
    result.discrepancies = extraction.discrepancies[: config.duplicate_sample_size]
    for d in extraction.discrepancies:
        logger.warning("total mismatch %s", d.describe())

    run = _Run(result, config, error_log, progress)
    for err in extraction.failures:
        run.fail(err.sheet, err.row_number, err.error_type, str(err))

    if mode is UploadMode.INITIAL:
        existing = compute_existing(
            store, upload_type, extraction.candidates, config.existence_chunk_size
        )
    else:
        # weekly_update: 既存 key は upsert で上書きするため照会しない
        existing = set()
    parts = partition(extraction.candidates, existing)
    for cand, reason in parts.skipped:
        run.skip(cand, reason)
    run.notify()

    for i, cand in enumerate(parts.to_insert, start=1):
        if _should_stop(control):
            result.stopped = True
            logger.info("stop requested after %d of %d records", i - 1, len(parts.to_insert))
            break
        try:
            if mode is UploadMode.INITIAL:
                store.insert(upload_type, cand.record)
                written = True
            else:
                written = store.upsert(upload_type, cand.record)
        except PersistenceError as e:
            prefix = f"Row {cand.row_number}"
            run.fail(cand.sheet, cand.row_number, "PERSISTENCE_ERROR", f"{prefix}: {e}")
        else:
            if not written:
                # 同一行が既に存在 (upsert で変更なし)
                run.skip(cand, SkipReason.ALREADY_IN_DATABASE)
            else:
                result.uploaded += 1
                if isinstance(cand.record, ReceivingVoucherRecord):
                    result.lines += len(cand.record.lines)
        if i % config.batch_size == 0:
            run.notify()
    run.notify()

    manifest = UploadManifest.from_result(result, run.all_errors, config.manifest_error_limit)
    try:
        store.record_manifest(manifest)
    except PersistenceError as e:
        logger.error("manifest write failed file=%s: %s", file_name, e)
        if error_log is not None:
            error_log.append(ErrorRecord.for_file(file_name, "PERSISTENCE_ERROR", str(e)))

    result.elapsed_seconds = time.perf_counter() - started
    logger.info(
        "done file=%s total=%d uploaded=%d skipped=%d failed=%d mismatches=%d",
        file_name,
        result.total,
        result.uploaded,
        result.skipped,
        result.failed,
        result.mismatches,
    )
    return result
