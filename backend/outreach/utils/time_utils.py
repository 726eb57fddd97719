"""
Time helpers
The engine works with timezone-aware UTC datetimes; naive values are read as UTC.
"""
from datetime import datetime
from typing import Optional

import pytz


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(pytz.UTC)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC (naive input is assumed to be UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)
