# Shared pytest fixtures
from __future__ import annotations

import tempfile
from collections.abc import Callable
from pathlib import Path

import pandas as pd
import pytest

from retail_ingest.logging.init import reset_logging

ITEM_HEADER = ["Item #", "Vendor Name", "Item Name", "Category", "Avail Qty", "Order Cost", "Last Sold"]

SALES_HEADER = ["Date", "Store", "Receipt #", "Store Type", "Price"]

VOUCHER_HEADER = ["Voucher #", "Date", "Store", "Vendor", "QB Total", "Item #", "Item Name", "Qty", "Cost"]


@pytest.fixture(autouse=True)
def _isolate_logging():
    # CLI テストが propagate=False にしても caplog が効くよう毎回戻す
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


def write_workbook(path: Path, sheets: dict[str, list[list[object]]]) -> Path:
    """Write raw rows (no header inference) to an .xlsx file."""
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for sheet_name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=sheet_name, header=False, index=False)
    return path


@pytest.fixture()
def make_xlsx(tmp_path: Path) -> Callable[..., Path]:
    def _make(name: str, sheets: dict[str, list[list[object]]]) -> Path:
        return write_workbook(tmp_path / name, sheets)
    return _make


def item_rows(n: int, *, missing_vendor_at: int | None = None) -> list[list[object]]:
    """Header + n item rows; row ``missing_vendor_at`` (1-based) lacks vendor_name."""
    rows: list[list[object]] = [ITEM_HEADER]
    for i in range(1, n + 1):
        vendor = None if i == missing_vendor_at else f"Vendor {i % 7}"
        rows.append([f"ITM{i:04d}", vendor, f"Item {i}", "Tops", i % 5, 12.5, "2024-02-01"])
    return rows


@pytest.fixture()
def sales_detail_rows() -> list[list[object]]:
    return [
        SALES_HEADER,
        ["2024-01-05", "StoreA", "R100", "Retail", None],
        [None, "SKU1", "Blue Tee", None, 9.99],
        [None, "SKU2", "Red Cap", "Outlet", 4.99],
        ["2024-01-06", "StoreB", "R200", None, None],
        [None, "SKU3", "Green Sock", None, -2.5],
    ]


@pytest.fixture()
def voucher_rows() -> list[list[object]]:
    return [
        VOUCHER_HEADER,
        ["V1", "2024-03-01", "StoreA", "Acme", 100.00, None, None, None, None],
        [None, None, None, None, None, "A1", "Tee", 2, 10.00],
        [None, None, None, None, None, "A2", "Cap", 3, 20.00],
        ["V2", "2024-03-02", "StoreB", "Bolt", 45.00, "B1", "Sock", 3, 15.00],
    ]
