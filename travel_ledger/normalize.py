# travel_ledger/normalize.py
"""
Helpers that turn raw spreadsheet / form values into ledger values.

Every function here is total: bad input gives a sentinel, never an exception.

Public API:
- cell_to_string(value) -> str
- normalize_category(value) -> code | None
- category_label(code) -> Chinese label
- normalize_pay_channel_code(value) -> code | None
- parse_date_cell(value) -> "YYYY-MM-DD" | ""
- parse_number_cell(value) -> float | None
- parse_time_range("HH:MM-HH:MM") -> (start, end) | None
- compute_duration_minutes("HH:MM-HH:MM") -> int | None
- range_start_minutes("HH:MM-HH:MM") -> int
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, time
from typing import Any, Optional

__all__ = [
    "CATEGORY_CODES",
    "CATEGORY_LABELS",
    "LEGACY_PAY_CHANNEL_ALIASES",
    "cell_to_string",
    "normalize_category",
    "category_label",
    "normalize_pay_channel_code",
    "parse_date_cell",
    "parse_number_cell",
    "parse_time_range",
    "compute_duration_minutes",
    "range_start_minutes",
]

CATEGORY_CODES = ("TRANSPORT", "HOTEL", "FOOD", "TICKET", "SHOPPING", "OTHER")

CATEGORY_LABELS = {
    "TRANSPORT": "交通",
    "HOTEL": "住宿",
    "FOOD": "餐饮",
    "TICKET": "门票",
    "SHOPPING": "购物",
    "OTHER": "其他",
}
_LABEL_TO_CATEGORY = {label: code for code, label in CATEGORY_LABELS.items()}

# Short codes written by older clients; rows were rewritten on startup too.
LEGACY_PAY_CHANNEL_ALIASES = {
    "MEITUAN": "MEITUAN_MONTHLY",
    "DOUYIN": "DOUYIN_MONTHLY",
}

_DATE_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_RANGE_RE = re.compile(r"^(\d{1,2}):(\d{2})\s*-\s*(\d{1,2}):(\d{2})$")
_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})")


# ---------- Cells ----------


def cell_to_string(value: Any) -> str:
    """
    Render a cell value as trimmed text.
    Dates become YYYY-MM-DD, clock times HH:MM, and whole floats lose their '.0'
    (so a numeric train number 1234 stays "1234").
    """
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return value.strftime("%H:%M")
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value).strip()


# ---------- Categories ----------


def normalize_category(value: Any) -> Optional[str]:
    """Map 交通/TRANSPORT/transport ... to the canonical code, else None."""
    raw = cell_to_string(value)
    if not raw:
        return None
    if raw in _LABEL_TO_CATEGORY:
        return _LABEL_TO_CATEGORY[raw]
    upper = raw.upper()
    return upper if upper in CATEGORY_CODES else None


def category_label(code: Any) -> str:
    raw = cell_to_string(code)
    normalized = raw.upper() if raw else "OTHER"
    return CATEGORY_LABELS.get(normalized) or raw or "其他"


# ---------- Payment channels ----------


def normalize_pay_channel_code(value: Any) -> Optional[str]:
    """
    Trim + upper-case a channel code and apply the legacy short-code aliases.
    Empty input gives None. The result is not checked against any registry.
    """
    raw = cell_to_string(value)
    if not raw:
        return None
    upper = raw.upper()
    return LEGACY_PAY_CHANNEL_ALIASES.get(upper, upper)


# ---------- Dates & numbers ----------


def parse_date_cell(value: Any) -> str:
    """
    Accept a native date or text like 2026/2/5, 2026.02.05, 2026-2-5.
    Returns 'YYYY-MM-DD', or '' when the value isn't a real calendar date.
    """
    if value is None or value == "":
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()

    raw = cell_to_string(value)
    if not raw:
        return ""
    normalized = raw.replace("/", "-").replace(".", "-")
    m = _DATE_RE.match(normalized)
    if not m:
        return ""
    try:
        parsed = date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError:
        return ""  # e.g. 2026-02-30
    return parsed.isoformat()


def parse_number_cell(value: Any) -> Optional[float]:
    """Numbers pass through, text is coerced; empty or non-finite gives None."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        num = float(value)
        return num if math.isfinite(num) else None
    raw = cell_to_string(value)
    if not raw:
        return None
    try:
        num = float(raw)
    except ValueError:
        return None
    return num if math.isfinite(num) else None


# ---------- Time ranges ----------


def parse_time_range(time_range: Any) -> Optional[tuple[int, int]]:
    """Split 'H(H):MM-H(H):MM' into (start, end) minutes; None if it doesn't match."""
    raw = cell_to_string(time_range)
    m = _RANGE_RE.match(raw)
    if not m:
        return None
    start = int(m.group(1)) * 60 + int(m.group(2))
    end = int(m.group(3)) * 60 + int(m.group(4))
    return start, end


def compute_duration_minutes(time_range: Any) -> Optional[int]:
    """
    Minutes between the two halves of 'H(H):MM-H(H):MM' on one clock day.
    Examples: '09:10-10:35' -> 85, '10:00-09:00' -> None, 'abc' -> None.
    """
    parsed = parse_time_range(time_range)
    if parsed is None:
        return None
    start, end = parsed
    if end < start:
        return None  # no overnight wrap
    return end - start


def range_start_minutes(time_range: Any) -> int:
    """Start of a time range in minutes since midnight; 0 if it can't be read."""
    raw = cell_to_string(time_range)
    if "-" not in raw:
        return 0
    head = raw.split("-", 1)[0].strip()
    m = _CLOCK_RE.match(head)
    if not m or len(head) != m.end():
        return 0
    hours, minutes = int(m.group(1)), int(m.group(2))
    if hours > 23 or minutes > 59:
        return 0
    return hours * 60 + minutes
