from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Make a naive datetime timezone-aware (UTC). Already-aware datetimes are converted.

    MongoDB stores datetimes without tzinfo (naive). Kickoff instants read back
    from the fixtures collection must go through ensure_utc() before they are
    compared with utcnow() or with window bounds.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_utc(value: str | datetime) -> datetime:
    """Parse an ISO 8601 string (with or without Z/offset) or datetime into UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def elapsed_ms(started: datetime, finished: datetime | None = None) -> int:
    finished = finished or utcnow()
    return max(0, int((finished - started).total_seconds() * 1000))
