"""
Utility functions and helpers for the BESS converter.
"""

import math
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, Optional


def generate_uuid() -> str:
    """Generate a unique UUID string"""
    return str(uuid.uuid4())


def clean_string_value(value: Any) -> str:
    """Strip whitespace and one layer of surrounding quotes ('x' or "x")"""
    if value is None:
        return ""
    text = str(value).strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        text = text[1:-1].strip()
    return text


def safe_parse_float(value: Any) -> Optional[float]:
    """
    Parse a numeric cell tolerantly.

    Returns None for missing, empty, placeholder or non-finite values
    instead of raising.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = float(value)
    else:
        text = clean_string_value(value)
        if not text or text in ('-', '--', 'null', 'NULL', 'None'):
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if not math.isfinite(number):
        return None
    return number


def safe_parse_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Parse an integer cell tolerantly, accepting '3' and '3.0'"""
    number = safe_parse_float(value)
    if number is None:
        return default
    return int(number)


def parse_time_string(value: str, time_format: str) -> datetime:
    """
    Parse a timestamp cell with the given strptime format.

    %m, %d and %H accept values without zero-padding, so '1/5/2024 8:00'
    parses with '%m/%d/%Y %H:%M'.

    Raises:
        ValueError: If the value is empty or does not match the format
    """
    text = clean_string_value(value)
    if not text:
        raise ValueError("Empty timestamp value")
    try:
        return datetime.strptime(text, time_format)
    except ValueError:
        raise ValueError(f"Cannot parse timestamp {text!r} with pattern {time_format!r}") from None


def mean_of(values: Iterable[Optional[float]]) -> Optional[float]:
    """Arithmetic mean of the non-null values, None when there are none"""
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


def calculate_statistics(values: Iterable[float]) -> Dict[str, float]:
    """Mean/min/max of a numeric series; all zero for an empty series"""
    series = list(values)
    if not series:
        return {"avg": 0.0, "min": 0.0, "max": 0.0}
    return {
        "avg": sum(series) / len(series),
        "min": min(series),
        "max": max(series),
    }


def format_bank_id(digits: str) -> str:
    """Zero-pad a captured bank number: '1' -> 'Bank01', '12' -> 'Bank12'"""
    return f"Bank{digits.zfill(2)}"


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format"""
    if seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"
