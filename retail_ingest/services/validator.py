from __future__ import annotations

import logging
import re
from collections.abc import Collection, Mapping, Sequence
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from ..errors import InvalidFieldError, MissingFieldError, ValidationError
from ..models.row_data import RowData, RowResult

"""Row validation and type coercion.

validate_rows() always walks the whole batch. A bad row produces a RowResult
carrying its ValidationError; it never stops the rows after it.

Field types (type_schema values):
- "string"  : str, trimmed. integral floats render without ".0"
- "number"  : Decimal, locale-agnostic ("." decimal point; "$" and "," dropped)
- "integer" : int, integral values only
- "date"    : datetime.date

必須フィールドの値が変換不能 -> InvalidFieldError、任意フィールドなら None。
"""

__all__ = [
    "validate_rows",
    "validate_row",
    "coerce_number",
    "coerce_integer",
    "coerce_date",
    "coerce_string",
    "is_empty",
]

logger = logging.getLogger(__name__)

_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_ISO_DATETIME_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})[T ]\d{1,2}:\d{2}")
_US_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2}|\d{4})$")

# Excel シリアル値: 1970-01-01 (=25569) より大きい数値のみ日付とみなす
_EXCEL_EPOCH = date(1899, 12, 30)
_EXCEL_SERIAL_MIN = 25569
_YEAR_PIVOT = 50


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, float) and value != value:  # NaN
        return True
    return False


def coerce_string(value: Any) -> str | None:
    if is_empty(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.date().isoformat() if value.time() == datetime.min.time() else value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def coerce_number(value: Any) -> Decimal | None:
    """Parse a number into Decimal, or None when it is not a number."""
    if is_empty(value) or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        # str() を経由して 2 進浮動小数の展開 (9.9900000000000002...) を避ける
        result = Decimal(str(value))
    else:
        text = str(value).strip().replace("$", "").replace(",", "").replace(" ", "")
        negative = text.startswith("(") and text.endswith(")")
        if negative:
            text = text[1:-1]
        try:
            result = Decimal(text)
        except InvalidOperation:
            return None
        if negative:
            result = -result
    if not result.is_finite():
        return None
    return result


def coerce_integer(value: Any) -> int | None:
    number = coerce_number(value)
    if number is None or number != number.to_integral_value():
        return None
    return int(number)


def _expand_year(year_text: str) -> int:
    year = int(year_text)
    if len(year_text) == 2:
        return 1900 + year if year > _YEAR_PIVOT else 2000 + year
    return year


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def coerce_date(value: Any, *, field: str = "", row_number: int | None = None) -> date | None:
    """Parse a date cell.

    Accepts date/datetime objects, Excel serial numbers, ISO ``YYYY-MM-DD``,
    ``M/D/YYYY`` / ``MM/DD/YYYY`` / ``M/D/YY`` and ISO datetimes (date portion
    taken verbatim). Anything else returns None and logs a warning.
    """
    if is_empty(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        if value > _EXCEL_SERIAL_MIN:
            return _EXCEL_EPOCH + timedelta(days=int(value))
    else:
        text = str(value).strip()
        parsed: date | None = None
        m = _ISO_DATE_RE.match(text) or _ISO_DATETIME_RE.match(text)
        if m:
            parsed = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        else:
            m = _US_DATE_RE.match(text)
            if m:
                parsed = _safe_date(_expand_year(m.group(3)), int(m.group(1)), int(m.group(2)))
        if parsed is not None:
            return parsed
    logger.warning("unrecognized date value=%r field=%s row=%s", value, field, row_number)
    return None


def _coerce(field_type: str, value: Any, field: str, row_number: int) -> Any:
    if field_type == "number":
        return coerce_number(value)
    if field_type == "integer":
        return coerce_integer(value)
    if field_type == "date":
        return coerce_date(value, field=field, row_number=row_number)
    return coerce_string(value)


def validate_row(
    row: RowData,
    required_fields: Collection[str],
    type_schema: Mapping[str, str],
) -> dict[str, Any]:
    """Validate one row, returning typed values or raising ValidationError."""
    for name in required_fields:
        if is_empty(row.values.get(name)):
            raise MissingFieldError(row.row_number, name, row.sheet)

    typed: dict[str, Any] = {}
    for name, value in row.values.items():
        field_type = type_schema.get(name, "string")
        coerced = _coerce(field_type, value, name, row.row_number)
        if coerced is None and not is_empty(value) and field_type in ("number", "integer", "date"):
            if name in required_fields:
                raise InvalidFieldError(row.row_number, name, value, row.sheet)
            logger.debug("optional %s field=%s value=%r -> None", field_type, name, value)
        typed[name] = coerced
    return typed


def validate_rows(
    rows: Sequence[RowData],
    required_fields: Collection[str],
    type_schema: Mapping[str, str],
) -> list[RowResult]:
    """Validate a whole batch; one RowResult per input row, in order."""
    results: list[RowResult] = []
    for row in rows:
        try:
            typed = validate_row(row, required_fields, type_schema)
        except ValidationError as e:
            results.append(RowResult(row_number=row.row_number, error=e, sheet=row.sheet))
            continue
        results.append(RowResult(row_number=row.row_number, values=typed, sheet=row.sheet))
    return results
