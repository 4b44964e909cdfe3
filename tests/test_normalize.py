# tests/test_normalize.py
"""
Unit tests for the cell/value normalizers (no DB, no HTTP).
"""

from datetime import date, datetime, time

import pytest

from travel_ledger.normalize import (
    category_label,
    cell_to_string,
    compute_duration_minutes,
    normalize_category,
    normalize_pay_channel_code,
    parse_date_cell,
    parse_number_cell,
    parse_time_range,
    range_start_minutes,
)


def test_duration_minutes():
    assert compute_duration_minutes("09:10-10:35") == 85
    assert compute_duration_minutes("10:00-09:00") is None  # no overnight wrap
    assert compute_duration_minutes("abc") is None
    assert compute_duration_minutes("9:05 - 9:05") == 0
    assert compute_duration_minutes(None) is None


def test_parse_time_range_halves():
    assert parse_time_range("08:00-09:30") == (480, 570)
    assert parse_time_range("08:00") is None
    assert parse_time_range("") is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2026/02/10", "2026-02-10"),
        ("2026-2-5", "2026-02-05"),
        ("2026.2.5", "2026-02-05"),
        ("not a date", ""),
        ("2026-02-30", ""),
        ("26-02-10", ""),
        ("", ""),
        (None, ""),
        (date(2026, 3, 1), "2026-03-01"),
        (datetime(2026, 3, 1, 8, 30), "2026-03-01"),
    ],
)
def test_parse_date_cell(raw, expected):
    assert parse_date_cell(raw) == expected


def test_parse_number_cell():
    assert parse_number_cell(12) == 12.0
    assert parse_number_cell("12.5") == 12.5
    assert parse_number_cell(" 3 ") == 3.0
    assert parse_number_cell("") is None
    assert parse_number_cell("abc") is None
    assert parse_number_cell(float("nan")) is None
    assert parse_number_cell("inf") is None
    assert parse_number_cell(True) is None


def test_cell_to_string():
    assert cell_to_string(None) == ""
    assert cell_to_string("  G12 ") == "G12"
    assert cell_to_string(1234.0) == "1234"
    assert cell_to_string(12.5) == "12.5"
    assert cell_to_string(time(9, 5)) == "09:05"
    assert cell_to_string(date(2026, 1, 2)) == "2026-01-02"


def test_normalize_category_accepts_labels_and_codes():
    assert normalize_category("交通") == "TRANSPORT"
    assert normalize_category("hotel") == "HOTEL"
    assert normalize_category(" FOOD ") == "FOOD"
    assert normalize_category("飞机") is None
    assert normalize_category("") is None


def test_category_label():
    assert category_label("TICKET") == "门票"
    assert category_label("ticket") == "门票"
    assert category_label(None) == "其他"
    assert category_label("CUSTOM") == "CUSTOM"


def test_pay_channel_code_aliases():
    assert normalize_pay_channel_code(" alipay ") == "ALIPAY"
    assert normalize_pay_channel_code("meituan") == "MEITUAN_MONTHLY"
    assert normalize_pay_channel_code("DOUYIN") == "DOUYIN_MONTHLY"
    assert normalize_pay_channel_code("") is None
    assert normalize_pay_channel_code(None) is None


def test_range_start_minutes():
    assert range_start_minutes("09:10-10:35") == 550
    assert range_start_minutes("25:00-26:00") == 0
    assert range_start_minutes("morning") == 0
    assert range_start_minutes(None) == 0
