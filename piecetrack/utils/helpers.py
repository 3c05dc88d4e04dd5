"""Shared parsing helpers for blueprints and services.

parse_date_input:  strict, raises ValueError on bad input
parse_int_arg:     query-string integer with default
"""
from datetime import date, datetime


def parse_date_input(value):
    """Parse a date value, raising ValueError on bad input.

    Supports YYYY-MM-DD, YYYY-MM-DDTHH:MM:SS (→ .date()) and DD.MM.YYYY;
    date and datetime objects pass through.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Invalid date value: {value!r}")
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(value, "%d.%m.%Y").date()
    except ValueError as exc:
        raise ValueError(
            "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
        ) from exc


def parse_int_arg(value, default=None):
    """Int from a query-string value; *default* when missing, ValueError when malformed."""
    if value is None or value == "":
        return default
    return int(value)
