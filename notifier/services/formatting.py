# notifier/services/formatting.py
"""
Pure helpers that turn raw Mongo field values into display strings.

Nothing here performs I/O or keeps state. Values coming out of Mongo can be
Decimal128, Int64, floats, strings with Persian digits, or extended-JSON dicts,
so every formatter unwraps and normalizes before doing anything else.
"""

from __future__ import annotations

import datetime as dt
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

import jdatetime
from bson.decimal128 import Decimal128
from bson.int64 import Int64

PLACEHOLDER = "-"

_PERSIAN_ZERO = 0x06F0
_ARABIC_INDIC_ZERO = 0x0660
_DIGIT_TABLE = {
    **{_PERSIAN_ZERO + i: str(i) for i in range(10)},
    **{_ARABIC_INDIC_ZERO + i: str(i) for i in range(10)},
}

_NUMBER_RE = re.compile(r"^(-?)(\d+)(?:\.(\d+))?$")
_GROUP_RE = re.compile(r"\B(?=(\d{3})+(?!\d))")
_EXTENDED_JSON_NUMBER_KEYS = ("$numberDecimal", "$numberLong", "$numberInt", "$numberDouble")


def normalize_digits(value: Any) -> str:
    """Replace Persian and Arabic-Indic digits with ASCII ones."""
    return str(value).translate(_DIGIT_TABLE)


def split_csv(value: Optional[str]) -> List[str]:
    return [part.strip() for part in str(value or "").split(",") if part.strip()]


def unwrap_number(value: Any) -> Any:
    """
    Return a plain Python value for Mongo numeric wrappers.
    - Decimal128 -> its decimal string (keeps every digit)
    - Int64 -> int
    - {"$numberDecimal": "..."} style dicts -> the inner string
    Anything else is returned untouched.
    """
    if isinstance(value, Decimal128):
        return str(value.to_decimal())
    if isinstance(value, Int64):
        return int(value)
    if isinstance(value, dict):
        for key in _EXTENDED_JSON_NUMBER_KEYS:
            if key in value:
                return value[key]
    return value


def pick_first_present(doc: Optional[Dict[str, Any]], keys: Iterable[str]) -> Any:
    """
    First non-empty value among `keys`, in order.

    Record shapes differ between collections (amount may live under `amount`,
    `total` or `value`), so callers pass the aliases they accept.
    None, missing keys and blank strings are skipped.
    """
    if not doc:
        return None
    for key in keys:
        if key not in doc:
            continue
        value = unwrap_number(doc[key])
        if value is None:
            continue
        if str(value).strip() == "":
            continue
        return value
    return None


def format_thousands(value: Any) -> str:
    """
    Group the integer part with commas, keep the fraction exactly as given.

    1234567.5 -> "1,234,567.5", "۱۲۳۴" -> "1,234", None -> "-".
    Values that are not plain decimals come back as str(value).
    """
    value = unwrap_number(value)
    if value is None or isinstance(value, bool):
        return PLACEHOLDER if value is None else str(value)

    normalized = normalize_digits(str(value).strip()).replace(",", "")
    if normalized == "":
        return PLACEHOLDER

    match = _NUMBER_RE.match(normalized)
    if not match:
        return str(value)

    sign, int_part, frac_part = match.groups()
    grouped = _GROUP_RE.sub(",", int_part)
    return f"{sign}{grouped}.{frac_part}" if frac_part else f"{sign}{grouped}"


def _to_datetime(value: Any) -> Optional[dt.datetime]:
    if isinstance(value, dt.datetime):
        return value
    if isinstance(value, dt.date):
        return dt.datetime.combine(value, dt.time.min)
    try:
        return dt.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _localize(value: dt.datetime, tz: str) -> dt.datetime:
    # pymongo hands back naive UTC datetimes
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(ZoneInfo(tz))


def format_jalali_parts(value: Any, tz: str = "Asia/Tehran") -> Tuple[str, str]:
    """Split a timestamp into Jalali ("1403/7/12", "14:05"). Empty parts for no value."""
    if not value:
        return "", ""
    parsed = _to_datetime(value)
    if parsed is None:
        return str(value), ""
    local = _localize(parsed, tz)
    jalali = jdatetime.date.fromgregorian(date=local.date())
    return f"{jalali.year}/{jalali.month}/{jalali.day}", f"{local.hour:02d}:{local.minute:02d}"


def format_jalali_timestamp(value: Any, tz: str = "Asia/Tehran") -> str:
    """Full Jalali timestamp for audit emails, e.g. "1403-07-12 14:05:09"."""
    if not value:
        return PLACEHOLDER
    parsed = _to_datetime(value)
    if parsed is None:
        return str(value)
    local = _localize(parsed, tz)
    jalali = jdatetime.date.fromgregorian(date=local.date())
    return (
        f"{jalali.year:04d}-{jalali.month:02d}-{jalali.day:02d} "
        f"{local.hour:02d}:{local.minute:02d}:{local.second:02d}"
    )


def squash_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()
