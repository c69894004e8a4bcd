from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

"""Typed record models persisted by the ingestion pipeline.

Each record exposes ``identity``: the ordered tuple of its business-identity
fields. The dedup engine turns identity tuples into NULL-safe composite keys.

Money is Decimal everywhere (qb_total / corrected_total / cost / price) so that
the 0.01 mismatch tolerance is not eaten by binary floating point.
"""

__all__ = [
    "UploadType",
    "UploadMode",
    "VoucherType",
    "ItemListRecord",
    "SalesTransactionRecord",
    "ReceivingLineRecord",
    "ReceivingVoucherRecord",
    "ReconciliationDiscrepancy",
    "MISMATCH_TOLERANCE",
    "composite_key",
]

# 表示丸め許容 (固定値、設定不可)
MISMATCH_TOLERANCE = Decimal("0.01")


def _key_part(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, Decimal):
        # 9.99 と 9.990 を同一キーに
        return value.normalize()
    return value


def composite_key(values: Iterable[Any]) -> tuple[Any, ...]:
    """NULL-safe composite key: None equals None, Decimals compare by value.

    Empty strings fold into None so partially filled exports dedupe the same
    way as rows whose optional cells were never written.
    """
    return tuple(_key_part(v) for v in values)


class UploadType(Enum):
    """Declared type of an uploaded spreadsheet (also the record kind)."""
    ITEM_LIST = "item-list"
    SALES_TRANSACTIONS = "sales-transactions"
    RECEIVING_VOUCHER = "receiving-voucher"


class UploadMode(Enum):
    """Conflict policy: INITIAL rejects existing keys, WEEKLY_UPDATE upserts them."""
    INITIAL = "initial"
    WEEKLY_UPDATE = "weekly_update"


class VoucherType(Enum):
    RECEIVING = "Receiving"
    REVERSAL = "Reversal"


@dataclass(frozen=True)
class ItemListRecord:
    """One catalog row from the item list export. Identity: item_number."""
    item_number: str
    vendor_name: str
    item_name: str
    category: str | None = None
    gender: str | None = None
    avail_qty: int = 0
    hq_qty: int = 0
    gm_qty: int = 0
    hm_qty: int = 0
    mm_qty: int = 0
    nm_qty: int = 0
    pm_qty: int = 0
    lm_qty: int = 0
    last_rcvd: date | None = None
    creation_date: date | None = None
    last_sold: date | None = None
    style_number: str | None = None
    style_number_2: str | None = None
    order_cost: Decimal | None = None
    selling_price: Decimal | None = None
    notes: str | None = None
    size: str | None = None
    attribute: str | None = None
    file_name: str | None = None

    @property
    def identity(self) -> tuple[Any, ...]:
        return (self.item_number,)

    @property
    def key(self) -> tuple[Any, ...]:
        return composite_key(self.identity)


@dataclass(frozen=True)
class SalesTransactionRecord:
    """One sold (or returned, negative price) line of a receipt.

    Identity is all eight fields: the same receipt may legitimately repeat a
    SKU at the same price (quantity > 1 exported as repeated lines).
    """
    date: date | None
    store: str
    receipt_number: str
    sku: str
    item_name: str
    transaction_store_type: str | None
    price: Decimal
    sheet: str

    @property
    def identity(self) -> tuple[Any, ...]:
        return (
            self.date,
            self.store,
            self.receipt_number,
            self.sku,
            self.item_name,
            self.transaction_store_type,
            self.price,
            self.sheet,
        )

    @property
    def key(self) -> tuple[Any, ...]:
        return composite_key(self.identity)


@dataclass(frozen=True)
class ReceivingLineRecord:
    """Line item of a voucher. qty is signed, cost is never negative."""
    item_number: str | None
    item_name: str | None
    qty: int
    cost: Decimal

    @property
    def extended_cost(self) -> Decimal:
        return self.qty * self.cost


@dataclass(frozen=True)
class ReceivingVoucherRecord:
    """A receiving (or reversal) voucher with its line items.

    qb_total is the upstream system's figure, kept verbatim. corrected_total is
    always Σ(qty × cost) over ``lines``; neither overwrites the other.
    """
    voucher_number: str
    date: date | None
    store: str
    vendor: str | None
    type: VoucherType
    qb_total: Decimal | None
    corrected_total: Decimal
    total_qty: int
    lines: tuple[ReceivingLineRecord, ...] = field(default_factory=tuple)
    time: str | None = None
    file_name: str | None = None

    @property
    def identity(self) -> tuple[Any, ...]:
        return (self.voucher_number, self.store, self.date)

    @property
    def key(self) -> tuple[Any, ...]:
        return composite_key(self.identity)

    @property
    def difference(self) -> Decimal:
        # qb_total 欠落時は 0 として比較 (保存値は None のまま)
        return (self.qb_total or Decimal("0")) - self.corrected_total

    @property
    def has_mismatch(self) -> bool:
        return abs(self.difference) > MISMATCH_TOLERANCE


@dataclass(frozen=True)
class ReconciliationDiscrepancy:
    """Data-quality signal: upstream total disagrees with the line-item total.

    Not an error. Always surfaced to the caller, never blocks ingestion.
    """
    voucher_number: str
    store: str | None
    date: date | None
    qb_total: Decimal | None
    corrected_total: Decimal
    difference: Decimal
    sheet: str = ""

    @classmethod
    def from_voucher(cls, voucher: ReceivingVoucherRecord, sheet: str = "") -> ReconciliationDiscrepancy:
        return cls(
            voucher_number=voucher.voucher_number,
            store=voucher.store,
            date=voucher.date,
            qb_total=voucher.qb_total,
            corrected_total=voucher.corrected_total,
            difference=voucher.difference,
            sheet=sheet,
        )

    def describe(self) -> str:
        return (
            f"voucher {self.voucher_number} ({self.store}, {self.date}): "
            f"qb_total={self.qb_total} corrected_total={self.corrected_total} "
            f"difference={self.difference}"
        )
