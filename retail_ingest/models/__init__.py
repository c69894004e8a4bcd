"""Domain models for the retail spreadsheet ingestion pipeline.

This package contains the dataclasses shared by the excel, services and db
layers: typed records, normalized rows, run results and configuration.
"""

from .config_models import ColumnInsert, DatabaseConfig, FormatConfig, IngestConfig
from .error_record import ErrorRecord
from .ingest_result import (
    DuplicateSample,
    IngestBatchResult,
    ProgressSnapshot,
    SkipReason,
    UploadManifest,
)
from .records import (
    ItemListRecord,
    ReceivingLineRecord,
    ReceivingVoucherRecord,
    ReconciliationDiscrepancy,
    SalesTransactionRecord,
    UploadMode,
    UploadType,
    VoucherType,
)
from .row_data import RowData, RowResult

__all__ = [
    # Configuration models
    "ColumnInsert",
    "DatabaseConfig",
    "FormatConfig",
    "IngestConfig",
    # Records
    "ItemListRecord",
    "ReceivingLineRecord",
    "ReceivingVoucherRecord",
    "ReconciliationDiscrepancy",
    "SalesTransactionRecord",
    "UploadMode",
    "UploadType",
    "VoucherType",
    # Processing models
    "ErrorRecord",
    "RowData",
    "RowResult",
    "DuplicateSample",
    "IngestBatchResult",
    "ProgressSnapshot",
    "SkipReason",
    "UploadManifest",
]
