"""
Value normalization for raw tabular and document input.
Handles currency-formatted amounts and heterogeneous date strings.
"""
import datetime as dt
import re
from typing import Any, Optional

import pandas as pd

from core.logger import setup_logger

logger = setup_logger(__name__)

CURRENCY_SYMBOLS = "€$£¥"
CURRENCY_CODES = ("EUR", "USD", "GBP", "CHF")

_AMOUNT_STRIP_RE = re.compile(rf"[{CURRENCY_SYMBOLS},\s\xa0]")
_CURRENCY_CODE_RE = re.compile(r"\b(?:%s)\b" % "|".join(CURRENCY_CODES), re.IGNORECASE)
_NUMERIC_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)$")

_DMY_RE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})$")
_MDY_RE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2}|\d{4})$")

# Formats accepted by the "native" parse step: ISO and spelled-out months.
_NATIVE_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%B %d, %Y",
)


def is_missing(value: Any) -> bool:
    """True for None, NaN and blank strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def clean_amount(value: Any) -> Optional[float]:
    """
    Parse a monetary amount.
    Strips currency symbols, currency codes, spaces and thousands separators.

    Args:
        value: Raw amount value (string or number)

    Returns:
        Float value (sign preserved) or None if unparseable
    """
    if is_missing(value):
        return None

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)

    amount_str = _CURRENCY_CODE_RE.sub("", str(value))
    amount_str = _AMOUNT_STRIP_RE.sub("", amount_str)

    if not _NUMERIC_RE.match(amount_str):
        logger.debug(f"Failed to parse amount: '{value}'")
        return None

    try:
        return float(amount_str)
    except (ValueError, TypeError) as e:
        logger.debug(f"Failed to parse amount: '{value}' -> {e}")
        return None


def _safe_date(year: int, month: int, day: int) -> Optional[dt.date]:
    try:
        return dt.date(year, month, day)
    except ValueError:
        return None


def parse_date(value: Any) -> Optional[dt.date]:
    """
    Parse a calendar date.

    Tries, in order: native formats (ISO, spelled-out month names),
    DD/MM/YYYY, then MM/DD/YYYY with 2- or 4-digit year (2-digit years
    are 2000+yy). The first pattern yielding a valid date wins.

    Args:
        value: Raw date value

    Returns:
        date or None if no pattern matches
    """
    if is_missing(value):
        return None

    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value

    date_str = " ".join(str(value).strip().split())

    for fmt in _NATIVE_DATE_FORMATS:
        try:
            return dt.datetime.strptime(date_str, fmt).date()
        except ValueError:
            continue

    match = _DMY_RE.match(date_str)
    if match:
        day, month, year = (int(part) for part in match.groups())
        parsed = _safe_date(year, month, day)
        if parsed:
            return parsed

    match = _MDY_RE.match(date_str)
    if match:
        month, day, year_str = match.groups()
        year = 2000 + int(year_str) if len(year_str) == 2 else int(year_str)
        parsed = _safe_date(year, int(month), int(day))
        if parsed:
            return parsed

    return None


def normalize_date_string(value: str) -> str:
    """Return ISO YYYY-MM-DD when parseable, else the original string."""
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else value


def safe_get_string(row: Any, key: Optional[str], default: str = "") -> str:
    """
    Safely read a field as a stripped string.

    Args:
        row: Mapping or pandas Series
        key: Column key (None returns default)
        default: Default string value

    Returns:
        String value or default
    """
    if key is None:
        return default
    value = row.get(key, default)
    if is_missing(value):
        return default
    return str(value).strip()
