"""Parse the assorted `last_updated` encodings found in GBFS feeds."""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional


def _from_epoch(value: float) -> Optional[datetime]:
    """Interpret 10-digit values as seconds and 13-digit values as milliseconds."""
    if not math.isfinite(value):
        return None
    digits = len(str(abs(int(value))))
    if digits == 10:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if digits == 13:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Return an aware UTC datetime for POSIX seconds/millis or ISO-8601, else None.

    GBFS 2.x publishes POSIX seconds, 3.x publishes RFC 3339 strings, and some
    operators publish milliseconds or numeric strings.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return _from_epoch(value)

    if isinstance(value, str):
        text = value.strip()
        try:
            return _from_epoch(float(text))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    return None


def parse_ttl(value: Any) -> Optional[int]:
    """Return a non-negative integer TTL in seconds, or None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return max(0, int(value))
