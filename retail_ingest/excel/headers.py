from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from typing import Any

from ..models.row_data import RowData
from .cell_range import CellGrid

"""Header normalization: human-authored column titles -> canonical field names.

This module is the only place that knows how columns are spelled in the
exports ("Item #", "Receipt #", "Voucher No." ...). Everything downstream
works with the canonical snake_case names.

Lookup order per header (after trimming):
1. caller overrides (config header_overrides)
2. HEADER_ALIASES exact
3. HEADER_ALIASES lower-cased
4. slug fallback: lower, whitespace runs -> "_", drop [^a-z0-9_]
"""

__all__ = [
    "HEADER_ALIASES",
    "normalize_headers",
    "slugify_header",
    "rows_from_grid",
]

logger = logging.getLogger(__name__)

HEADER_ALIASES: dict[str, str] = {
    # item list
    "Item #": "item_number",
    "Item Number": "item_number",
    "Item No.": "item_number",
    "Vendor Name": "vendor_name",
    "Vendor": "vendor_name",
    "Item Name": "item_name",
    "Item Description": "item_name",
    "Category": "category",
    "Gender": "gender",
    "Avail Qty": "avail_qty",
    "HQ Qty": "hq_qty",
    "GM Qty": "gm_qty",
    "HM Qty": "hm_qty",
    "MM Qty": "mm_qty",
    "NM Qty": "nm_qty",
    "PM Qty": "pm_qty",
    "LM Qty": "lm_qty",
    "Last Rcvd": "last_rcvd",
    "Creation Date": "creation_date",
    "Last Sold": "last_sold",
    "Style Number": "style_number",
    "Style Number 2": "style_number_2",
    "Order Cost": "order_cost",
    "Selling Price": "selling_price",
    "Notes": "notes",
    "Size": "size",
    "Attribute": "attribute",
    # sales detail
    "Date": "date",
    "Store": "store",
    "Location": "store",
    "Receipt #": "receipt_number",
    "Receipt Number": "receipt_number",
    "SKU": "sku",
    "Product Name": "item_name",
    "Transaction Store Type": "transaction_store_type",
    "Store Type": "transaction_store_type",
    "Price": "price",
    "Amount": "price",
    "Sheet": "sheet",
    "Source Sheet": "sheet",
    # receiving vouchers
    "Voucher #": "voucher_number",
    "Voucher Number": "voucher_number",
    "Voucher No.": "voucher_number",
    "Time": "time",
    "QB Total": "qb_total",
    "Voucher Total": "qb_total",
    "Total": "qb_total",
    "Qty": "qty",
    "Quantity": "qty",
    "Cost": "cost",
    "Unit Cost": "cost",
    "Type": "type",
    "Voucher Type": "type",
}

_LOWER_ALIASES: dict[str, str] = {k.lower(): v for k, v in HEADER_ALIASES.items()}

_WS_RE = re.compile(r"\s+")
_INVALID_RE = re.compile(r"[^a-z0-9_]")


def slugify_header(header: str) -> str:
    """Deterministic snake_case slug of a header ("" when nothing survives)."""
    slug = _WS_RE.sub("_", header.strip().lower())
    return _INVALID_RE.sub("", slug)


def _header_text(header: Any) -> str:
    if header is None:
        return ""
    if isinstance(header, float):
        if header != header:  # NaN
            return ""
        if header.is_integer():
            return str(int(header))
    return str(header)


def normalize_headers(
    headers: Sequence[Any], overrides: Mapping[str, str] | None = None
) -> dict[str, str]:
    """Map each original header to its canonical field name.

    Empty / whitespace-only headers are dropped. Every other header gets a
    name: a header whose slug is empty (e.g. "#") becomes ``column_<index>``.

    Args:
        headers: header cells in column order
        overrides: caller mapping consulted before the alias table (keys are
            matched against the trimmed header)

    Returns:
        dict keyed by the original header text
    """
    overrides = overrides or {}
    result: dict[str, str] = {}
    for index, header in enumerate(headers):
        original = _header_text(header)
        trimmed = original.strip()
        if not trimmed:
            continue
        canonical = (
            overrides.get(trimmed)
            or HEADER_ALIASES.get(trimmed)
            or _LOWER_ALIASES.get(trimmed.lower())
            or slugify_header(trimmed)
            or f"column_{index}"
        )
        result[original] = canonical
    return result


def _clean_value(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    return value


def rows_from_grid(
    grid: CellGrid,
    sheet: str = "",
    overrides: Mapping[str, str] | None = None,
) -> tuple[list[str], list[RowData]]:
    """Split a transformed grid into canonical columns + normalized data rows.

    Row 0 is the header row. Fully blank data rows are skipped but still
    counted, so row numbers line up with the sheet below the header.

    Returns:
        (canonical column names in header order, rows)
    """
    if grid.is_empty:
        return [], []
    header_cells = grid.row_values(0)
    mapping = normalize_headers(header_cells, overrides)
    # 列位置 -> (元ヘッダ, 正規名)
    positions: list[tuple[int, str, str]] = []
    for c, cell in enumerate(header_cells):
        original = _header_text(cell)
        if original in mapping:
            positions.append((c, original, mapping[original]))
    columns: list[str] = []
    for _, _, canonical in positions:
        if canonical not in columns:
            columns.append(canonical)

    rows: list[RowData] = []
    for r in range(1, grid.n_rows):
        raw_cells = grid.row_values(r)
        if all(_clean_value(v) is None for v in raw_cells):
            continue
        values: dict[str, Any] = {}
        raw_values: dict[str, Any] = {}
        for c, original, canonical in positions:
            value = _clean_value(raw_cells[c])
            raw_values[original] = raw_cells[c]
            # 同一正規名に複数列が写像された場合は最初の非空値を採用
            if values.get(canonical) is None:
                values[canonical] = value
        rows.append(RowData(row_number=r, values=values, raw_values=raw_values, sheet=sheet))
    logger.debug("sheet=%s columns=%s data_rows=%d", sheet, columns, len(rows))
    return columns, rows
