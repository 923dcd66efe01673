"""
Time helpers shared across the job, the ingestion stages and the API.
"""

from __future__ import annotations

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def parse_iso_date(value: str) -> date:
    """Parse a strict ``YYYY-MM-DD`` string.

    ``date.fromisoformat`` also accepts ``20260115`` and week dates on
    Python 3.11+, which we do not want as as-of keys.

    Raises:
        ValueError: If ``value`` is not exactly ``YYYY-MM-DD``.
    """
    text = value.strip()
    if len(text) != 10 or text[4] != "-" or text[7] != "-":
        raise ValueError(f"Expected YYYY-MM-DD, got '{value}'.")
    return datetime.strptime(text, "%Y-%m-%d").date()


def to_utc_iso(dt: datetime) -> str:
    """Serialise a datetime as an ISO-8601 UTC string (naive → assumed UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def from_iso(value: str) -> datetime:
    """Parse an ISO-8601 datetime string stored by ``to_utc_iso``."""
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
