from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import sys

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from desk_insights.durations import (
    add_duration,
    format_hours_as_hm,
    format_minutes_as_hm,
    minutes_from_duration_text,
    parse_duration_to_hours,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("20 days 04:40 hrs", 20 * 24 + 4 + 40 / 60),
        ("1 day 00:30 hrs", 24.5),
        ("04:40 hrs", 4 + 40 / 60),
        ("5 hrs", 5.0),
        ("2.5", 2.5),
        ("  04:30 HRS ", 4.5),
    ],
)
def test_parse_duration_to_hours_formats(text, expected):
    assert parse_duration_to_hours(text) == pytest.approx(expected)


@pytest.mark.parametrize("text", [None, "", "   ", "n/a", 12, ["1:00 hrs"]])
def test_parse_duration_to_hours_unparsable_is_zero(text):
    assert parse_duration_to_hours(text) == 0.0


def test_days_pattern_takes_priority_over_clock():
    assert minutes_from_duration_text("2 days 01:15 hrs") == (48 + 1) * 60 + 15


def test_minutes_from_duration_text_absent_values():
    assert minutes_from_duration_text(None) is None
    assert minutes_from_duration_text("") is None
    assert minutes_from_duration_text("pending") is None


def test_format_minutes_distinguishes_zero_from_missing():
    assert format_minutes_as_hm(0) == "0:00"
    assert format_minutes_as_hm(None) == "-"
    assert format_minutes_as_hm(None, placeholder="n/a") == "n/a"
    assert format_minutes_as_hm(65) == "1:05"
    assert format_minutes_as_hm(600) == "10:00"


def test_format_hours_rounds_to_whole_minutes():
    assert format_hours_as_hm(1.999) == "2:00"
    assert format_hours_as_hm(0.5) == "0:30"
    assert format_hours_as_hm(None) == "-"


def test_format_then_parse_is_lossless_for_every_minute_of_the_day():
    for hours in range(24):
        for minutes in range(60):
            total = hours * 60 + minutes
            assert minutes_from_duration_text(format_minutes_as_hm(total)) == total


def test_add_duration_requires_strict_clock_text():
    created = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
    assert add_duration(created, "02:30 hrs") == datetime(2024, 5, 1, 11, 30, tzinfo=timezone.utc)
    assert add_duration(created, "1 day 02:30 hrs") is None
    assert add_duration(created, "5 hrs") is None
    assert add_duration(None, "02:30 hrs") is None
