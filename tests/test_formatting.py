"""Unit tests for formatting.py - display strings for steps."""

import pytest

from formatting import format_distance, format_duration, format_transit_time, parse_duration_seconds


class TestParseDuration:
    @pytest.mark.parametrize("raw,expected", [
        ("754s", 754),
        ("0s", 0),
        ("12.6s", 12),
        ("", 0),
        ("garbage", 0),
    ])
    def test_values(self, raw, expected):
        assert parse_duration_seconds(raw) == expected


class TestFormatDuration:
    def test_minutes_only(self):
        assert format_duration(754) == "12 min"

    def test_hours_and_minutes(self):
        assert format_duration(3 * 3600 + 5 * 60) == "3 hr 5 min"

    def test_under_a_minute(self):
        assert format_duration(30) == "0 min"


class TestFormatDistance:
    def test_feet_under_a_mile(self):
        assert format_distance(150) == "492 ft"

    def test_miles(self):
        assert format_distance(16093.4) == "10.0 mi"

    def test_exactly_one_mile(self):
        assert format_distance(1609.34) == "1.0 mi"


class TestFormatTransitTime:
    def test_rfc3339_utc(self):
        assert format_transit_time("2024-05-15T15:30:00Z") == "15:30"

    def test_with_offset(self):
        assert format_transit_time("2024-05-15T08:05:00-07:00") == "08:05"

    def test_unparseable_returned_raw(self):
        assert format_transit_time("soon") == "soon"

    def test_empty(self):
        assert format_transit_time("") == ""
