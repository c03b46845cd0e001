# src/relay_stage/db/time.py
"""UTC timestamps for rows and broadcast payloads."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def to_iso(value: datetime) -> str:
    """Render a stored timestamp as ISO 8601 in UTC.

    SQLite hands back naive datetimes even for ``timezone=True`` columns;
    those are taken to be UTC already.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()
