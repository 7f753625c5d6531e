"""
Timezone Utilities.

All timestamps the engine produces (snapshot creation, restore stamps,
pruning cutoffs) are timezone-aware UTC.
"""

from datetime import datetime, timezone

# UTC constant
UTC = timezone.utc


def utc_now() -> datetime:
    """
    Get current time in UTC (timezone-aware).

    Always use this instead of datetime.utcnow() which returns
    naive datetime.
    """
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


# ============================================================
# ISO 8601 (STORED SCHEDULES)
# ============================================================

def to_iso8601(dt: datetime) -> str:
    """
    Format as ISO 8601 with Z suffix, to the second.

    Usage:
        iso = to_iso8601(schedule.start_at)
        # "2024-01-15T14:30:00Z"
    """
    return ensure_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")


def from_iso8601(iso_string: str) -> datetime:
    """
    Parse ISO 8601 string to UTC datetime.

    Handles:
    - "2024-01-15T14:30:00Z"
    - "2024-01-15T09:30:00-05:00"
    """
    if iso_string.endswith("Z"):
        iso_string = iso_string[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(iso_string))
