from __future__ import annotations

import json

from retail_ingest.errors import MissingFieldError
from retail_ingest.models.error_record import ErrorRecord
from retail_ingest.models.row_data import RowData, RowResult


def test_row_data_get_with_default() -> None:
    """RowData.get falls back to the default for absent fields."""
    row = RowData(row_number=3, values={"item_number": "A1", "vendor_name": None}, sheet="Items")
    assert row.get("item_number") == "A1"
    assert row.get("vendor_name") is None
    assert row.get("category", "n/a") == "n/a"
    assert row.raw_values is None


def test_row_result_ok_flag() -> None:
    good = RowResult(row_number=1, values={"item_number": "A1"})
    bad = RowResult(row_number=2, error=MissingFieldError(2, "vendor_name"))
    assert good.ok
    assert not bad.ok
    assert str(bad.error) == "Row 2: Missing required field 'vendor_name'"


def test_error_record_row_minus_one_support() -> None:
    """File-level records serialize row -1 with the fixed key order."""
    rec = ErrorRecord.create(
        file="rv.xlsx",
        sheet="",
        row=-1,
        error_type="STRUCTURAL_ERROR",
        message="no sheet with voucher columns",
    )
    data = json.loads(rec.to_json_line())
    assert data["row"] == -1
    assert list(data) == ["timestamp", "file", "sheet", "row", "error_type", "message"]
    assert data["timestamp"].endswith("Z")
