"""Time utilities (UTC)."""

from datetime import datetime, timezone


def now_utc_naive() -> datetime:
    """
    Current time in UTC, returned as naive datetime for DB storage.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(dt: datetime) -> datetime:
    """Normalize a datetime to naive UTC. Naive values are assumed to be UTC."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def month_label(dt: datetime) -> str:
    """
    Month label ("YYYY-MM") for a timestamp, evaluated in UTC.
    """
    dt = to_utc_naive(dt)
    return f"{dt.year:04d}-{dt.month:02d}"


def to_utc_iso(dt: datetime) -> str:
    """Render a stored (naive UTC) timestamp as ISO string with offset."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()
