"""Date and time utilities."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional

SECONDS_PER_DAY = 86400.0


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Coerce a task-store timestamp into an aware UTC datetime.

    Accepts datetimes, ISO 8601 strings (a trailing ``Z`` is allowed) and
    epoch milliseconds, which is what the tracker's browser client stores.
    Anything else, including empty strings, yields None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value <= 0:
            return None
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return None


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def age_in_days(ts: Optional[datetime], now: datetime) -> float:
    """Days elapsed between ``ts`` and ``now``; never negative."""
    if ts is None:
        return 0.0
    return max(0.0, (now - ts).total_seconds() / SECONDS_PER_DAY)
