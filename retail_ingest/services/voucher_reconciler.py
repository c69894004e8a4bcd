from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from ..models.records import (
    MISMATCH_TOLERANCE,
    ReceivingLineRecord,
    VoucherType,
)
from ..models.row_data import RowData
from .validator import coerce_date, coerce_integer, coerce_number, coerce_string, is_empty

"""Receiving voucher grouping and total reconciliation.

The bookkeeping export prints a total per voucher that is known to be wrong
at times. We never trust it for arithmetic: corrected_total is recomputed as
Σ(qty × cost) over the voucher's lines with the *signed* qty, qb_total is kept
verbatim, and any disagreement beyond 0.01 is reported as a discrepancy.

Grouping (rows arrive contiguous per voucher):
- voucher_number 有り: 現在グループと (voucher_number, date, store) が一致すれば継続、
  それ以外は新グループ開始
- voucher_number 無し + 明細データ有り: 現在グループの続き (グループ無しなら破棄)
- 明細データ = item_number / item_name / qty のいずれかが非空
"""

__all__ = [
    "ReconciledVoucher",
    "reconcile_sheet",
    "is_reversal_sheet",
    "corrected_total",
]

logger = logging.getLogger(__name__)

_HEADER_FIELDS = ("vendor_name", "time", "qb_total", "type")


def is_reversal_sheet(sheet_name: str) -> bool:
    return "reversal" in sheet_name.lower()


def corrected_total(lines: Iterable[ReceivingLineRecord]) -> Decimal:
    return sum((line.qty * line.cost for line in lines), Decimal("0"))


@dataclass(frozen=True)
class ReconciledVoucher:
    """One voucher group with recomputed totals, prior to header validation.

    ``header`` holds the raw voucher-level values (voucher_number, date, store,
    vendor_name, time) so the validator can type-check them like any other row.
    """
    header: RowData
    voucher_type: VoucherType
    qb_total: Decimal | None
    corrected_total: Decimal
    total_qty: int
    lines: tuple[ReceivingLineRecord, ...]

    @property
    def difference(self) -> Decimal:
        return (self.qb_total or Decimal("0")) - self.corrected_total

    @property
    def has_mismatch(self) -> bool:
        return abs(self.difference) > MISMATCH_TOLERANCE


@dataclass
class _Group:
    voucher_number: str
    date_key: date | str | None
    store: str | None
    first_row: RowData
    header_values: dict[str, Any] = field(default_factory=dict)
    line_rows: list[RowData] = field(default_factory=list)

    def matches(self, voucher_number: str, date_key: date | str | None, store: str | None) -> bool:
        return (
            voucher_number == self.voucher_number
            and (date_key is None or date_key == self.date_key)
            and (store is None or store == self.store)
        )


def _date_key(value: Any) -> date | str | None:
    # 日付は書式 (文字列セル / 日付セル) によらず date 値で比較する
    if is_empty(value):
        return None
    return coerce_date(value, field="date") or coerce_string(value)


def _has_line_data(row: RowData) -> bool:
    return any(not is_empty(row.get(f)) for f in ("item_number", "item_name", "qty"))


def _parse_line(row: RowData, voucher_type: VoucherType) -> ReceivingLineRecord:
    raw_qty = row.get("qty")
    qty = coerce_integer(raw_qty)
    if qty is None:
        if not is_empty(raw_qty):
            logger.warning(
                "sheet=%s row=%d malformed qty=%r -> 0", row.sheet, row.row_number, raw_qty
            )
        qty = 0
    raw_cost = row.get("cost")
    cost = coerce_number(raw_cost)
    if cost is None:
        if not is_empty(raw_cost):
            logger.warning(
                "sheet=%s row=%d malformed cost=%r -> 0", row.sheet, row.row_number, raw_cost
            )
        cost = Decimal("0")
    # 返品伝票の数量は常に負。単価は絶対値で保持
    if voucher_type is VoucherType.REVERSAL and qty > 0:
        qty = -qty
    return ReceivingLineRecord(
        item_number=coerce_string(row.get("item_number")),
        item_name=coerce_string(row.get("item_name")),
        qty=qty,
        cost=abs(cost),
    )


def _finish(group: _Group, sheet_name: str) -> ReconciledVoucher:
    type_text = coerce_string(group.header_values.get("type")) or ""
    if is_reversal_sheet(sheet_name) or type_text.lower() == VoucherType.REVERSAL.value.lower():
        voucher_type = VoucherType.REVERSAL
    else:
        voucher_type = VoucherType.RECEIVING

    lines = tuple(_parse_line(r, voucher_type) for r in group.line_rows)

    raw_total = group.header_values.get("qb_total")
    qb_total = coerce_number(raw_total)
    if qb_total is None and not is_empty(raw_total):
        logger.warning(
            "sheet=%s voucher=%s malformed qb_total=%r", sheet_name, group.voucher_number, raw_total
        )

    first = group.first_row
    header = RowData(
        row_number=first.row_number,
        values={
            "voucher_number": group.voucher_number,
            "date": first.get("date"),
            "store": first.get("store"),
            "vendor_name": group.header_values.get("vendor_name"),
            "time": group.header_values.get("time"),
        },
        raw_values=first.raw_values,
        sheet=sheet_name,
    )
    return ReconciledVoucher(
        header=header,
        voucher_type=voucher_type,
        qb_total=qb_total,
        corrected_total=corrected_total(lines),
        total_qty=sum(line.qty for line in lines),
        lines=lines,
    )


def reconcile_sheet(rows: Iterable[RowData], sheet_name: str) -> list[ReconciledVoucher]:
    """Group one sheet's rows into vouchers and recompute their totals."""
    vouchers: list[ReconciledVoucher] = []
    current: _Group | None = None
    for row in rows:
        voucher_number = coerce_string(row.get("voucher_number"))
        if voucher_number is not None:
            date_key = _date_key(row.get("date"))
            store_key = coerce_string(row.get("store"))
            if current is None or not current.matches(voucher_number, date_key, store_key):
                if current is not None:
                    vouchers.append(_finish(current, sheet_name))
                current = _Group(voucher_number, date_key, store_key, first_row=row)
            for name in _HEADER_FIELDS:
                if is_empty(current.header_values.get(name)) and not is_empty(row.get(name)):
                    current.header_values[name] = row.get(name)
        elif not _has_line_data(row):
            continue
        elif current is None:
            logger.warning(
                "sheet=%s row=%d line without voucher header dropped", sheet_name, row.row_number
            )
            continue

        if _has_line_data(row):
            current.line_rows.append(row)

    if current is not None:
        vouchers.append(_finish(current, sheet_name))
    logger.debug("sheet=%s vouchers=%d", sheet_name, len(vouchers))
    return vouchers
