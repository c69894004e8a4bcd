from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, fields
from typing import Any

import psycopg2
from psycopg2.extras import execute_values

from ..errors import PersistenceError
from ..models.ingest_result import UploadManifest
from ..models.records import (
    ItemListRecord,
    ReceivingVoucherRecord,
    SalesTransactionRecord,
    UploadType,
    composite_key,
)
from .batch_insert import BatchInsertError, batch_insert

"""PostgreSQL implementation of the IngestStore protocol (psycopg2).

Each insert / upsert is its own transaction (COMMIT on success, ROLLBACK and
PersistenceError on failure) so that a bad record never takes earlier ones
down with it. Unique constraints on the natural keys are the last line of
defence against concurrent uploads of the same file.

既存チェックは VALUES リストとの IS NOT DISTINCT FROM 結合 (NULL 同士も一致扱い)。
"""

__all__ = [
    "SCHEMA_SQL",
    "PostgresStore",
]

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS item_list (
    id SERIAL PRIMARY KEY,
    item_number TEXT NOT NULL UNIQUE,
    vendor_name TEXT,
    item_name TEXT,
    category TEXT,
    gender TEXT,
    avail_qty INTEGER DEFAULT 0,
    hq_qty INTEGER DEFAULT 0,
    gm_qty INTEGER DEFAULT 0,
    hm_qty INTEGER DEFAULT 0,
    mm_qty INTEGER DEFAULT 0,
    nm_qty INTEGER DEFAULT 0,
    pm_qty INTEGER DEFAULT 0,
    lm_qty INTEGER DEFAULT 0,
    last_rcvd DATE,
    creation_date DATE,
    last_sold DATE,
    style_number TEXT,
    style_number_2 TEXT,
    order_cost NUMERIC,
    selling_price NUMERIC,
    notes TEXT,
    size TEXT,
    attribute TEXT,
    file_name TEXT,
    uploaded_at TIMESTAMP DEFAULT now()
);

CREATE TABLE IF NOT EXISTS sales_transactions (
    id SERIAL PRIMARY KEY,
    date DATE,
    store TEXT,
    receipt_number TEXT,
    sku TEXT,
    item_name TEXT,
    transaction_store_type TEXT,
    price NUMERIC,
    sheet TEXT,
    uploaded_at TIMESTAMP DEFAULT now(),
    CONSTRAINT sales_transactions_identity_key UNIQUE NULLS NOT DISTINCT
        (date, store, receipt_number, sku, item_name, transaction_store_type, price, sheet)
);

CREATE TABLE IF NOT EXISTS receiving_vouchers (
    id SERIAL PRIMARY KEY,
    voucher_number TEXT NOT NULL,
    date DATE NOT NULL,
    store TEXT NOT NULL,
    vendor TEXT,
    type TEXT NOT NULL,
    qb_total NUMERIC,
    corrected_total NUMERIC,
    total_qty INTEGER DEFAULT 0,
    time TEXT,
    file_name TEXT,
    uploaded_at TIMESTAMP DEFAULT now(),
    CONSTRAINT receiving_vouchers_identity_key UNIQUE (voucher_number, store, date)
);

CREATE TABLE IF NOT EXISTS receiving_lines (
    id SERIAL PRIMARY KEY,
    voucher_id INTEGER NOT NULL REFERENCES receiving_vouchers(id) ON DELETE CASCADE,
    item_number TEXT,
    item_name TEXT,
    qty INTEGER NOT NULL,
    cost NUMERIC NOT NULL,
    uploaded_at TIMESTAMP DEFAULT now()
);

CREATE TABLE IF NOT EXISTS upload_history (
    id SERIAL PRIMARY KEY,
    file_name TEXT NOT NULL,
    upload_type TEXT NOT NULL,
    upload_mode TEXT,
    total_records INTEGER DEFAULT 0,
    successful_records INTEGER DEFAULT 0,
    failed_records INTEGER DEFAULT 0,
    skipped_records INTEGER DEFAULT 0,
    errors TEXT,
    uploaded_at TIMESTAMP DEFAULT now()
);
"""


@dataclass(frozen=True)
class _Table:
    name: str
    columns: tuple[str, ...]
    key_columns: tuple[str, ...]
    key_casts: tuple[str, ...]  # VALUES 側の型 (NULL だけの列でも型推論させるため)
    constraint: str
    to_row: Callable[[Any], tuple[Any, ...]]


def _item_row(record: ItemListRecord) -> tuple[Any, ...]:
    return tuple(getattr(record, f.name) for f in fields(ItemListRecord))


def _sales_row(record: SalesTransactionRecord) -> tuple[Any, ...]:
    return tuple(getattr(record, f.name) for f in fields(SalesTransactionRecord))


_VOUCHER_COLUMNS = (
    "voucher_number", "date", "store", "vendor", "type",
    "qb_total", "corrected_total", "total_qty", "time", "file_name",
)


def _voucher_row(record: ReceivingVoucherRecord) -> tuple[Any, ...]:
    return (
        record.voucher_number,
        record.date,
        record.store,
        record.vendor,
        record.type.value,
        record.qb_total,
        record.corrected_total,
        record.total_qty,
        record.time,
        record.file_name,
    )


_TABLES: dict[UploadType, _Table] = {
    UploadType.ITEM_LIST: _Table(
        name="item_list",
        columns=tuple(f.name for f in fields(ItemListRecord)),
        key_columns=("item_number",),
        key_casts=("text",),
        constraint="item_list_item_number_key",
        to_row=_item_row,
    ),
    UploadType.SALES_TRANSACTIONS: _Table(
        name="sales_transactions",
        columns=tuple(f.name for f in fields(SalesTransactionRecord)),
        key_columns=(
            "date", "store", "receipt_number", "sku",
            "item_name", "transaction_store_type", "price", "sheet",
        ),
        key_casts=("date", "text", "text", "text", "text", "text", "numeric", "text"),
        constraint="sales_transactions_identity_key",
        to_row=_sales_row,
    ),
    UploadType.RECEIVING_VOUCHER: _Table(
        name="receiving_vouchers",
        columns=_VOUCHER_COLUMNS,
        key_columns=("voucher_number", "store", "date"),
        key_casts=("text", "text", "date"),
        constraint="receiving_vouchers_identity_key",
        to_row=_voucher_row,
    ),
}

_LINE_COLUMNS = ("voucher_id", "item_number", "item_name", "qty", "cost")


def _db_message(e: Exception) -> str:
    return str(e).strip().splitlines()[0] if str(e).strip() else type(e).__name__


class PostgresStore:
    """IngestStore over one psycopg2 connection (autocommit off)."""

    def __init__(self, connection: Any) -> None:
        self.conn = connection

    def ensure_schema(self) -> None:
        with self.conn.cursor() as cur:
            cur.execute(SCHEMA_SQL)
        self.conn.commit()
        logger.info("schema ensured")

    def exists(self, kind: UploadType, keys: Sequence[tuple[Any, ...]]) -> set[tuple[Any, ...]]:
        if not keys:
            return set()
        table = _TABLES[kind]
        aliases = [f"k{i}" for i in range(len(table.key_columns))]
        join = " AND ".join(
            f't."{col}" IS NOT DISTINCT FROM v.{alias}'
            for col, alias in zip(table.key_columns, aliases, strict=True)
        )
        sql = (
            f"SELECT DISTINCT {', '.join('v.' + a for a in aliases)} "
            f"FROM (VALUES %s) AS v({', '.join(aliases)}) "
            f"JOIN {table.name} t ON {join}"
        )
        template = "(" + ", ".join(f"%s::{cast}" for cast in table.key_casts) + ")"
        try:
            with self.conn.cursor() as cur:
                rows = execute_values(cur, sql, list(keys), template=template, fetch=True)
            self.conn.commit()
        except psycopg2.Error as e:
            self.conn.rollback()
            raise PersistenceError(f"existence check failed: {_db_message(e)}") from e
        return {composite_key(r) for r in rows}

    def insert(self, kind: UploadType, record: Any) -> None:
        self._write(kind, record, upsert=False)

    def upsert(self, kind: UploadType, record: Any) -> bool:
        return self._write(kind, record, upsert=True)

    def record_manifest(self, manifest: UploadManifest) -> None:
        columns = tuple(f.name for f in fields(UploadManifest))
        row = tuple(getattr(manifest, c) for c in columns)
        try:
            with self.conn.cursor() as cur:
                batch_insert(cur, "upload_history", columns, [row])
            self.conn.commit()
        except BatchInsertError as e:
            self.conn.rollback()
            raise PersistenceError(f"manifest write failed: {e}") from e

    def _write(self, kind: UploadType, record: Any, *, upsert: bool) -> bool:
        table = _TABLES[kind]
        on_conflict = None
        if upsert:
            updatable = [c for c in table.columns if c not in table.key_columns]
            if updatable:
                assignments = ", ".join(f'"{c}" = EXCLUDED."{c}"' for c in updatable)
                on_conflict = f"ON CONFLICT ON CONSTRAINT {table.constraint} DO UPDATE SET {assignments}"
            else:
                # 売上は全列が key: 既存なら何もしない
                on_conflict = f"ON CONFLICT ON CONSTRAINT {table.constraint} DO NOTHING"
        try:
            with self.conn.cursor() as cur:
                result = batch_insert(
                    cur,
                    table.name,
                    table.columns,
                    [table.to_row(record)],
                    returning=("id",) if kind is UploadType.RECEIVING_VOUCHER else None,
                    on_conflict=on_conflict,
                )
                # DO NOTHING で衝突した場合 rowcount は 0
                written = cur.rowcount != 0
                if kind is UploadType.RECEIVING_VOUCHER:
                    self._replace_lines(cur, record, result)
            self.conn.commit()
        except (BatchInsertError, psycopg2.Error) as e:
            self.conn.rollback()
            raise PersistenceError(_db_message(e)) from e
        return written

    def _replace_lines(self, cur: Any, voucher: ReceivingVoucherRecord, result: Any) -> None:
        voucher_id = result.returned_values[0][0]
        # upsert 時は旧明細を入れ替え
        cur.execute("DELETE FROM receiving_lines WHERE voucher_id = %s", (voucher_id,))
        batch_insert(
            cur,
            "receiving_lines",
            _LINE_COLUMNS,
            [(voucher_id, ln.item_number, ln.item_name, ln.qty, ln.cost) for ln in voucher.lines],
        )
