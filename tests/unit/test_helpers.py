"""
Unit tests for the tolerant parsing and statistics helpers.
"""
import pytest
from datetime import datetime

from bess_converter.utils.helpers import (
    calculate_statistics,
    clean_string_value,
    format_bank_id,
    format_duration,
    generate_uuid,
    mean_of,
    parse_time_string,
    safe_parse_float,
    safe_parse_int
)


class TestCleanStringValue:
    """Test clean_string_value."""

    def test_strips_whitespace_and_quotes(self):
        assert clean_string_value('  "DEV-1" ') == "DEV-1"
        assert clean_string_value("'01/05/2024 08:00'") == "01/05/2024 08:00"

    def test_keeps_unbalanced_quotes(self):
        assert clean_string_value('"abc') == '"abc'

    def test_none_becomes_empty(self):
        assert clean_string_value(None) == ""


class TestSafeParseFloat:
    """Test safe_parse_float."""

    @pytest.mark.parametrize("value, expected", [
        ("3.31", 3.31),
        (" 25 ", 25.0),
        ('"4.1"', 4.1),
        (7, 7.0),
        ("-1.5", -1.5),
    ])
    def test_numbers(self, value, expected):
        assert safe_parse_float(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", [None, "", "   ", "-", "--", "null", "abc", "nan", "inf", float("nan")])
    def test_missing_or_invalid_is_none(self, value):
        assert safe_parse_float(value) is None

    def test_bool_is_not_a_number(self):
        assert safe_parse_float(True) is None


class TestSafeParseInt:
    """Test safe_parse_int."""

    def test_accepts_float_text(self):
        assert safe_parse_int("3") == 3
        assert safe_parse_int("3.0") == 3

    def test_default(self):
        assert safe_parse_int("", default=0) == 0
        assert safe_parse_int("x") is None


class TestParseTimeString:
    """Test parse_time_string."""

    def test_project_formats(self):
        assert parse_time_string("01/05/2024 08:00", "%m/%d/%Y %H:%M") == datetime(2024, 1, 5, 8, 0)
        assert parse_time_string("2024-01-05 08:00:30", "%Y-%m-%d %H:%M:%S") == datetime(2024, 1, 5, 8, 0, 30)

    def test_unpadded_fields(self):
        assert parse_time_string("1/5/2024 8:00", "%m/%d/%Y %H:%M") == datetime(2024, 1, 5, 8, 0)

    def test_empty_value_raises(self):
        with pytest.raises(ValueError, match="Empty timestamp"):
            parse_time_string("  ", "%m/%d/%Y %H:%M")

    def test_mismatch_raises_with_pattern(self):
        with pytest.raises(ValueError, match="Cannot parse timestamp"):
            parse_time_string("2024-01-05", "%m/%d/%Y %H:%M")


class TestStatistics:
    """Test mean_of and calculate_statistics."""

    def test_mean_ignores_none(self):
        assert mean_of([25.0, None, 26.5]) == pytest.approx(25.75)

    def test_mean_of_nothing_is_none(self):
        assert mean_of([]) is None
        assert mean_of([None, None]) is None

    def test_calculate_statistics(self):
        stats = calculate_statistics([1.0, 3.0, 2.0])
        assert stats == {"avg": pytest.approx(2.0), "min": 1.0, "max": 3.0}

    def test_calculate_statistics_empty(self):
        assert calculate_statistics([]) == {"avg": 0.0, "min": 0.0, "max": 0.0}


class TestFormatting:
    """Test id and duration formatting."""

    def test_format_bank_id(self):
        assert format_bank_id("1") == "Bank01"
        assert format_bank_id("12") == "Bank12"
        assert format_bank_id("123") == "Bank123"

    def test_format_duration(self):
        assert format_duration(1.5) == "1.50s"
        assert format_duration(90) == "1.5m"
        assert format_duration(7200) == "2.0h"

    def test_generate_uuid_unique(self):
        assert generate_uuid() != generate_uuid()
