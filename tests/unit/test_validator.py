from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal

import pytest

from retail_ingest.errors import InvalidFieldError, MissingFieldError
from retail_ingest.models.row_data import RowData
from retail_ingest.services.validator import (
    coerce_date,
    coerce_integer,
    coerce_number,
    coerce_string,
    validate_row,
    validate_rows,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1,234.50", Decimal("1234.50")),
        (" $9.99 ", Decimal("9.99")),
        ("(5.00)", Decimal("-5.00")),
        (9.99, Decimal("9.99")),
        (3, Decimal("3")),
        ("abc", None),
        ("", None),
        ("nan", None),
    ],
)
def test_coerce_number(raw, expected) -> None:
    """Currency symbols and thousands separators are stripped."""
    assert coerce_number(raw) == expected


def test_coerce_integer_rejects_fractions() -> None:
    """Only integral values coerce to int."""
    assert coerce_integer("3") == 3
    assert coerce_integer(4.0) == 4
    assert coerce_integer("2.5") is None


def test_coerce_string_renders_integral_floats() -> None:
    assert coerce_string(12345.0) == "12345"
    assert coerce_string("  x ") == "x"
    assert coerce_string("   ") is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2024-01-05", date(2024, 1, 5)),
        ("1/5/2024", date(2024, 1, 5)),
        ("01/05/2024", date(2024, 1, 5)),
        ("1/5/24", date(2024, 1, 5)),
        ("1/5/51", date(1951, 1, 5)),
        ("1/5/50", date(2050, 1, 5)),
        ("2024-01-05T23:30:00", date(2024, 1, 5)),
        (datetime(2024, 1, 5, 10, 0), date(2024, 1, 5)),
        (45296, date(2024, 1, 5)),
    ],
)
def test_coerce_date_formats(raw, expected) -> None:
    """ISO, US and two-digit-year dates plus Excel serials are accepted."""
    assert coerce_date(raw) == expected


def test_coerce_date_unrecognized_logs_warning(caplog) -> None:
    """An unknown date format gives None and a warning."""
    with caplog.at_level(logging.WARNING):
        assert coerce_date("next tuesday", field="date", row_number=4) is None
    assert "unrecognized date" in caplog.text


def test_missing_required_field() -> None:
    """Blank required values raise MissingFieldError."""
    row = RowData(7, {"item_number": "A1", "vendor_name": "  "})
    with pytest.raises(MissingFieldError) as exc:
        validate_row(row, ["item_number", "vendor_name"], {})
    assert exc.value.row_number == 7
    assert exc.value.field == "vendor_name"
    assert str(exc.value) == "Row 7: Missing required field 'vendor_name'"


def test_invalid_required_number_vs_optional_number() -> None:
    """Unparseable numbers fail when required and become None otherwise."""
    row = RowData(2, {"price": "ten", "order_cost": "n/a"})
    with pytest.raises(InvalidFieldError):
        validate_row(row, ["price"], {"price": "number", "order_cost": "number"})
    typed = validate_row(
        RowData(2, {"price": "10", "order_cost": "n/a"}),
        ["price"],
        {"price": "number", "order_cost": "number"},
    )
    assert typed == {"price": Decimal("10"), "order_cost": None}


def test_validate_rows_processes_whole_batch() -> None:
    """A bad row does not stop validation of later rows."""
    rows = [RowData(i, {"sku": None if i == 2 else f"S{i}"}) for i in range(1, 5)]
    results = validate_rows(rows, ["sku"], {})
    assert [r.ok for r in results] == [True, False, True, True]
    assert results[1].error.error_type == "MISSING_FIELD"
    assert results[3].values == {"sku": "S4"}
