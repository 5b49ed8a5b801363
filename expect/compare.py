"""Value normalization and record comparison for Expect.

Fixture values come from JSON/YAML/CSV text while actual values come back
typed from the driver, so both sides are normalized before comparing:
  - None equals only None
  - bool compares as 0/1
  - numbers compare numerically (as Decimal); numeric text is read as a
    number only when the other side is not text, so "00123" differs from
    the stored text "123"
  - dates, datetimes and ISO-8601 strings compare by canonical text; a
    datetime at midnight equals its date
"""

from __future__ import annotations

import json
import math
import re
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

_NUMERIC = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_ISO_DATETIME = re.compile(
    r"\d{4}-\d{2}-\d{2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?"
)

_ABSENT = object()

# Reported as the actual value of an expected column the actual row does not have
ABSENT_COLUMN = "<absent column>"


def _canonical_datetime(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    if value.time() == time(0):
        return value.date().isoformat()
    return value.isoformat(sep=" ")


def normalize_value(value: Any, numeric_text: bool = True) -> Any:
    """Canonical form of a value for equality checks.

    With numeric_text=False numeric-looking strings stay text.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return str(value)
    if isinstance(value, (int, float, Decimal)):
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return str(value)
    if isinstance(value, datetime):
        return _canonical_datetime(value)
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, str):
        text = value.strip()
        if numeric_text and _NUMERIC.fullmatch(text):
            return Decimal(text)
        if _ISO_DATETIME.fullmatch(text):
            try:
                return _canonical_datetime(datetime.fromisoformat(text.replace("Z", "+00:00")))
            except ValueError:
                return value
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=str)
    return value


def values_equal(expected: Any, actual: Any) -> bool:
    numeric_text = not (isinstance(expected, str) and isinstance(actual, str))
    return normalize_value(expected, numeric_text) == normalize_value(actual, numeric_text)


def lookup_column(row: dict[str, Any], column: str) -> Any:
    """Column value by exact name, then case-insensitively (SQL Server names); _ABSENT if none."""
    if column in row:
        return row[column]
    lowered = column.lower()
    for name, value in row.items():
        if name.lower() == lowered:
            return value
    return _ABSENT


def compare_fields(expected: dict[str, Any], actual: dict[str, Any]) -> list[tuple[str, Any, Any]]:
    """(column, expected, actual) for every expected field that differs.

    Only the fields present in the expectation are compared. A column missing
    from the actual row always differs and is reported as ABSENT_COLUMN.
    """
    diffs = []
    for column, expected_value in expected.items():
        actual_value = lookup_column(actual, column)
        if actual_value is _ABSENT:
            diffs.append((column, expected_value, ABSENT_COLUMN))
            continue
        if not values_equal(expected_value, actual_value):
            diffs.append((column, expected_value, actual_value))
    return diffs


def key_of(record: dict[str, Any], pk_columns: list[str]) -> tuple | None:
    """Normalized key tuple, or None when any key value is absent."""
    key = []
    for column in pk_columns:
        value = lookup_column(record, column)
        if value is _ABSENT or value is None:
            return None
        key.append(normalize_value(value))
    return tuple(key)
