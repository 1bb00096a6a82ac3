from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def seconds_until(moment: Optional[datetime], now: datetime) -> int:
    """
    Whole seconds from now until moment, rounded up.

    Returns 0 when moment is None or already past. Used for retry_after
    values so a countdown never reaches zero before the lock actually ends.
    """
    if moment is None:
        return 0
    remaining = (moment - now).total_seconds()
    if remaining <= 0:
        return 0
    return int(math.ceil(remaining))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
