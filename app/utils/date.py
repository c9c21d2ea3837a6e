"""
Date parsing utilities for flexible date format handling.

Imported files carry dates as ISO strings, locale-formatted strings or native
Excel dates. Everything is normalised to naive UTC ``datetime`` values before
it reaches the ORM.
"""

import re
import logging
from datetime import date, datetime
from typing import Any, Optional

import pandas as pd

from app.core.config import settings

logger = logging.getLogger(__name__)

FAILED_SAMPLE_LIMIT = 5
SUPPRESSION_NOTICE_EVERY = 100

_NUMERIC_DATE = re.compile(r'^\d{1,2}[/-]\d{1,2}[/-]\d{2,4}')
_ISO_DATE = re.compile(r'^\d{4}-\d{2}-\d{2}([T ]\d{2}:\d{2}(:\d{2})?)?')

_failure_stats: dict = {}


def _record_parse_failure(value: Any, context: Optional[str], error: Exception) -> None:
    """
    Collect failure stats and emit limited logs (sampled warnings + periodic summaries).
    """
    key = context or "default"
    stats = _failure_stats.setdefault(key, {"count": 0, "samples": []})
    stats["count"] += 1
    count = stats["count"]

    if len(stats["samples"]) < FAILED_SAMPLE_LIMIT:
        stats["samples"].append(value)
        logger.debug("Failed to parse date%s value '%s': %s", f" ({key})" if context else "", value, error)
        return

    if count == FAILED_SAMPLE_LIMIT + 1 or count % SUPPRESSION_NOTICE_EVERY == 0:
        logger.info(
            "Suppressed additional date parse messages after %d failures%s; sample values=%s",
            count,
            f" ({key})" if context else "",
            stats["samples"],
        )


def _dayfirst_preference(text: str) -> Optional[bool]:
    match = _NUMERIC_DATE.match(text)
    if not match:
        return None
    parts = re.split(r'[/-]', match.group(0))
    first, second = int(parts[0]), int(parts[1])
    if first > 12 and second <= 31:
        return True
    if second > 12 and first <= 12:
        return False
    return settings.date_default_dayfirst


def parse_flexible_datetime(
    value: Any,
    *,
    log_context: Optional[str] = None,
    log_failures: bool = True,
) -> Optional[datetime]:
    """
    Parse a date/time value from various formats.

    Supports ISO 8601 ("2025-10-20", "2024-09-04T23:09:18Z"), DD/MM/YYYY and
    MM/DD/YYYY (ambiguous values follow ``settings.date_default_dayfirst``),
    native ``date``/``datetime`` objects and anything else pandas can infer.

    Args:
        value: Raw cell value.
        log_context: Label used to group failure logs (usually the column).
        log_failures: Whether unparseable values are logged.

    Returns:
        Naive UTC ``datetime``, or None when the value is empty or unparseable.
    """
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        stamp = pd.Timestamp(value)
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if not text:
            return None
        stamp = None
        last_error: Optional[Exception] = None
        dayfirst = _dayfirst_preference(text)
        attempts = []
        if dayfirst is not None:
            attempts.extend([dayfirst, not dayfirst])
        elif _ISO_DATE.match(text):
            attempts.append(False)
        else:
            attempts.append(None)
        for attempt in attempts:
            try:
                if attempt is None:
                    stamp = pd.to_datetime(text, utc=True, errors='raise')
                else:
                    stamp = pd.to_datetime(text, utc=True, dayfirst=attempt, errors='raise')
                break
            except (ValueError, TypeError, OverflowError) as exc:
                last_error = exc
        if stamp is None or pd.isna(stamp):
            if log_failures:
                _record_parse_failure(value, log_context, last_error or ValueError("Unable to determine format"))
            return None

    if stamp.tzinfo is not None:
        stamp = stamp.tz_convert('UTC').tz_localize(None)
    return stamp.to_pydatetime()


def looks_like_datetime(value: Any) -> bool:
    """Return True for values that read as a calendar date (not bare numbers)."""
    if isinstance(value, (datetime, date)):
        return True
    if not isinstance(value, str):
        return False
    text = value.strip()
    if not (_ISO_DATE.match(text) or _NUMERIC_DATE.match(text)):
        return False
    return parse_flexible_datetime(text, log_failures=False) is not None
