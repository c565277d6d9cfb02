"""
Helpers for normalising and coercing spreadsheet cell values.

Readers hand back whatever the file holds: strings from CSV, numbers, dates
and booleans from workbooks, NaN from pandas. Everything in the engine goes
through these helpers so a cell is interpreted the same way regardless of
where it came from.
"""
import math
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional


def normalize_cell(value: Any) -> Any:
    """Map empty strings and NaN to None. Whitespace-only text is kept."""
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, str) and value == "":
        return None
    return value


def is_empty(value: Any) -> bool:
    return normalize_cell(value) is None


def is_blank(value: Any) -> bool:
    """True for empty cells and whitespace-only text; used for sheet layout only."""
    value = normalize_cell(value)
    return value is None or (isinstance(value, str) and value.strip() == "")


def stringify(value: Any) -> str:
    """
    Render a cell value the way it is shown to users and matched by rules.

    Integral floats lose their trailing ".0" so that a workbook cell holding
    42 matches the pattern ^\\d+$ the same way the CSV text "42" does.
    """
    value = normalize_cell(value)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


def to_number(value: Any) -> Optional[float]:
    """Strict float conversion; returns None for anything non-numeric."""
    value = normalize_cell(value)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def is_number(value: Any) -> bool:
    return to_number(value) is not None


def is_text(value: Any) -> bool:
    """True for non-blank strings that do not read as numbers."""
    value = normalize_cell(value)
    return isinstance(value, str) and not is_blank(value) and not is_number(value)
