from __future__ import annotations

import fnmatch
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from ..models.row_data import RowData
from .validator import is_empty

"""Sales detail hierarchy parser.

The POS "Sales Detail" export flattens receipts into two kinds of rows:

    Date        Store   Receipt #  Store Type  Price
    2024-01-05  StoreA  R100                          <- receipt header
                SKU1    Blue Tee   Retail      9.99   <- line item
                SKU2    Red Cap                4.99   <- line item

On line-item rows the Store / Receipt # columns hold the SKU and the item
name. That positional reuse is a fixed property of the export and is resolved
here only: candidates leaving this module carry sku / item_name under their
own names.

State machine (per sheet, no state carried across sheets):
- TRANSACTION_HEADER: date, store, receipt_number set and price empty
  -> becomes the current receipt context
- LINE_ITEM: date empty, store, receipt_number, price set and a context exists
  -> emits one candidate row
- 上記以外 (空行・小計行) は黙ってスキップ
- コンテキストなしの LINE_ITEM 形状行は破棄 (warning ログ)
"""

__all__ = [
    "SALES_DETAIL_PATTERN",
    "ReceiptContext",
    "ParseStats",
    "is_sales_detail_sheet",
    "parse_sales_sheet",
]

logger = logging.getLogger(__name__)

SALES_DETAIL_PATTERN = "Sales Detail*"


@dataclass(frozen=True)
class ReceiptContext:
    """Current transaction context opened by a receipt header row."""
    date: Any
    store: Any
    receipt_number: Any
    transaction_store_type: Any
    row_number: int


@dataclass
class ParseStats:
    headers: int = 0
    lines: int = 0
    orphans: int = 0
    skipped: int = 0


def is_sales_detail_sheet(sheet_name: str) -> bool:
    return fnmatch.fnmatchcase(sheet_name, SALES_DETAIL_PATTERN)


def _is_header_row(row: RowData) -> bool:
    return (
        not is_empty(row.get("date"))
        and not is_empty(row.get("store"))
        and not is_empty(row.get("receipt_number"))
        and is_empty(row.get("price"))
    )


def _is_line_shaped(row: RowData) -> bool:
    return (
        is_empty(row.get("date"))
        and not is_empty(row.get("store"))
        and not is_empty(row.get("receipt_number"))
        and not is_empty(row.get("price"))
    )


def parse_sales_sheet(
    rows: Iterable[RowData], sheet_name: str, stats: ParseStats | None = None
) -> list[RowData]:
    """Rebuild receipt/line structure of one sheet into flat candidate rows.

    Each returned RowData has the canonical sales fields (date, store,
    receipt_number, sku, item_name, transaction_store_type, price, sheet) and
    the row_number of the line-item row it came from.
    """
    stats = stats if stats is not None else ParseStats()
    context: ReceiptContext | None = None
    out: list[RowData] = []
    for row in rows:
        if _is_header_row(row):
            context = ReceiptContext(
                date=row.get("date"),
                store=row.get("store"),
                receipt_number=row.get("receipt_number"),
                transaction_store_type=row.get("transaction_store_type"),
                row_number=row.row_number,
            )
            stats.headers += 1
            continue
        if _is_line_shaped(row):
            if context is None:
                stats.orphans += 1
                logger.warning(
                    "sheet=%s row=%d line item without receipt header dropped",
                    sheet_name,
                    row.row_number,
                )
                continue
            store_type = row.get("transaction_store_type")
            if is_empty(store_type):
                store_type = context.transaction_store_type
            out.append(
                RowData(
                    row_number=row.row_number,
                    values={
                        "date": context.date,
                        "store": context.store,
                        "receipt_number": context.receipt_number,
                        # 明細行では Store / Receipt # 列が SKU / 品名を運ぶ
                        "sku": row.get("store"),
                        "item_name": row.get("receipt_number"),
                        "transaction_store_type": store_type,
                        "price": row.get("price"),
                        "sheet": sheet_name,
                    },
                    raw_values=row.raw_values,
                    sheet=sheet_name,
                )
            )
            stats.lines += 1
            continue
        stats.skipped += 1
    logger.debug(
        "sheet=%s headers=%d lines=%d orphans=%d skipped=%d",
        sheet_name,
        stats.headers,
        stats.lines,
        stats.orphans,
        stats.skipped,
    )
    return out
