from __future__ import annotations

import datetime as dt
from typing import Optional


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def age_ms(ts: Optional[dt.datetime], now: Optional[dt.datetime] = None) -> float:
    """Milliseconds elapsed since ``ts``; infinite when ``ts`` is unknown."""
    if ts is None:
        return float("inf")
    now = now or utc_now()
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=dt.timezone.utc)
    return (now - ts).total_seconds() * 1000.0
