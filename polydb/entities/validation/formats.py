"""
Format and Type Matchers

Fixed-grammar matchers used by the `format` and `type` rules, plus the
date/time parsing shared by the ordering rules.
"""

from typing import Any, Optional
from datetime import date, datetime, time
from decimal import Decimal
from urllib.parse import urlparse
import ipaddress
import math
import re

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
IPV4_PATTERN = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")
TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d):([0-5]\d)$")


def is_number(value: Any) -> bool:
    """int, float or Decimal, excluding bool and NaN"""
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    if isinstance(value, Decimal) and value.is_nan():
        return False
    return True


def is_empty(value: Any) -> bool:
    return value is None or value == ""


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a datetime, date or ISO-8601 string; None when unparseable"""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def parse_time_of_day(value: Any) -> Optional[int]:
    """Seconds since midnight from a time, datetime or "HH:MM[:SS]" string"""
    if isinstance(value, time):
        return value.hour * 3600 + value.minute * 60 + value.second
    if isinstance(value, str):
        parts = value.strip().split(":")
        if 2 <= len(parts) <= 3 and all(p.isdigit() for p in parts):
            hours, minutes = int(parts[0]), int(parts[1])
            seconds = int(parts[2]) if len(parts) == 3 else 0
            return hours * 3600 + minutes * 60 + seconds
    moment = parse_datetime(value)
    if moment is None:
        return None
    return moment.hour * 3600 + moment.minute * 60 + moment.second


def comparable_datetimes(left: datetime, right: datetime):
    """Drop tzinfo when only one side carries it"""
    if (left.tzinfo is None) != (right.tzinfo is None):
        return left.replace(tzinfo=None), right.replace(tzinfo=None)
    return left, right


def _is_url(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme) and bool(parsed.netloc or parsed.path) and " " not in value


def _is_ipv4(value: str) -> bool:
    return bool(IPV4_PATTERN.match(value)) and all(0 <= int(part) <= 255 for part in value.split("."))


def _is_ipv6(value: str) -> bool:
    try:
        ipaddress.IPv6Address(value)
        return True
    except ValueError:
        return False


def check_format(value: Any, fmt: str) -> bool:
    text = str(value)
    if fmt == "email":
        return bool(EMAIL_PATTERN.match(text))
    if fmt == "url":
        return _is_url(text)
    if fmt in ("ip", "ipv4"):
        return _is_ipv4(text)
    if fmt == "ipv6":
        return _is_ipv6(text)
    if fmt == "uuid":
        return bool(UUID_PATTERN.match(text))
    if fmt in ("date", "datetime"):
        return parse_datetime(value) is not None
    if fmt == "time":
        return bool(TIME_PATTERN.match(text))
    raise ValueError(f"Unknown format: {fmt}")


def check_type(value: Any, field_type: str) -> bool:
    if field_type in ("string", "text"):
        return isinstance(value, str)
    if field_type in ("number", "decimal"):
        return is_number(value)
    if field_type == "bigint":
        return isinstance(value, int) and not isinstance(value, bool)
    if field_type == "boolean":
        return isinstance(value, bool)
    if field_type == "date":
        return parse_datetime(value) is not None
    if field_type == "timestamp":
        return is_number(value) and value > 0
    if field_type == "array":
        return isinstance(value, (list, tuple))
    if field_type == "object":
        return isinstance(value, dict)
    if field_type == "json":
        return isinstance(value, (dict, list))
    if field_type == "uuid":
        return isinstance(value, str) and bool(UUID_PATTERN.match(value))
    if field_type == "binary":
        return isinstance(value, (bytes, bytearray, memoryview))
    # enum membership is checked by the enum rule
    return field_type in ("enum", "any")


def convert_value(value: Any, field_type: Optional[str]) -> Any:
    """
    Best-effort conversion of incoming values to a declared type.

    Values that cannot be converted are returned unchanged so the type rule
    reports them.
    """
    if value is None or field_type is None:
        return value
    if field_type in ("number", "decimal") and isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return value
        return int(number) if number.is_integer() and "." not in value else number
    if field_type == "bigint" and isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    if field_type == "boolean" and isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off"):
            return False
        return value
    if field_type == "boolean" and isinstance(value, (int, float)) and not isinstance(value, bool):
        return bool(value)
    if field_type == "date" and isinstance(value, str):
        return parse_datetime(value) or value
    if field_type in ("string", "text") and not isinstance(value, str) and is_number(value):
        return str(value)
    return value


# Export main components
__all__ = [
    "check_format", "check_type", "convert_value", "parse_datetime",
    "parse_time_of_day", "comparable_datetimes", "is_number", "is_empty"
]
