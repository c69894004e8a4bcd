from __future__ import annotations

from dataclasses import dataclass, field

from .records import UploadType

"""Config dataclasses for the ingestion pipeline.

The loader (retail_ingest.config.loader) turns YAML into these frozen objects;
everything downstream only sees the dataclasses.
"""

__all__ = [
    "ColumnInsert",
    "FormatConfig",
    "DatabaseConfig",
    "IngestConfig",
    "DEFAULT_EXPECTED_COLUMNS",
]

# ヘッダ正規化後に存在必須の列 (欠落 = StructuralError)
DEFAULT_EXPECTED_COLUMNS: dict[UploadType, frozenset[str]] = {
    UploadType.ITEM_LIST: frozenset({"item_number", "vendor_name", "item_name"}),
    UploadType.SALES_TRANSACTIONS: frozenset({"date", "store", "receipt_number", "price"}),
    UploadType.RECEIVING_VOUCHER: frozenset({"voucher_number", "date", "store", "qty", "cost"}),
}


@dataclass(frozen=True)
class ColumnInsert:
    """Insert ``len(headers)`` empty columns at ``index`` and label them."""
    index: int
    headers: tuple[str, ...]


@dataclass(frozen=True)
class FormatConfig:
    """How to turn one raw sheet of a given upload type into header + data rows.

    Structural edits are applied in this order: auto header detection,
    banner_rows, footer_rows, drop_columns, insert_columns.
    """
    upload_type: UploadType
    sheet_pattern: str | None = None  # fnmatch パターン。None = 先頭シート (item-list) / 全シート
    banner_rows: int = 0  # 先頭から削除する行数 (エクスポートのタイトル等)
    footer_rows: int = 0  # 末尾から削除する行数
    auto_detect_header: bool = False
    drop_columns: frozenset[int] = frozenset()
    insert_columns: tuple[ColumnInsert, ...] = ()
    header_overrides: dict[str, str] = field(default_factory=dict)
    expected_columns: frozenset[str] | None = None
    keep_na_strings: tuple[str, ...] = ()

    @property
    def required_columns(self) -> frozenset[str]:
        if self.expected_columns is not None:
            return self.expected_columns
        return DEFAULT_EXPECTED_COLUMNS[self.upload_type]


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection fallback; environment variables take precedence."""
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class IngestConfig:
    """Root configuration object."""
    formats: dict[UploadType, FormatConfig]
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    batch_size: int = 100  # 進捗通知の単位 (並行制御ではない)
    existence_chunk_size: int = 500  # 既存チェック 1 クエリあたりの件数
    error_sample_size: int = 5  # 応答に含めるエラー件数
    manifest_error_limit: int = 100  # 履歴台帳に保存するエラー件数
    duplicate_sample_size: int = 10
    message_max_length: int = 300

    def format_for(self, upload_type: UploadType) -> FormatConfig:
        return self.formats.get(upload_type) or FormatConfig(upload_type=upload_type)

    @staticmethod
    def defaults() -> IngestConfig:
        return IngestConfig(formats={t: FormatConfig(upload_type=t) for t in UploadType})
