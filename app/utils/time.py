"""Time utilities."""
from datetime import UTC, datetime, timezone


def utcnow() -> datetime:
    """Return current UTC time with timezone awareness."""

    return datetime.now(tz=UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round trip)."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_unix(ts: int | float | None) -> datetime | None:
    """Convert a gateway epoch timestamp to an aware UTC datetime."""

    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=UTC)


__all__ = ["utcnow", "as_utc", "from_unix"]
