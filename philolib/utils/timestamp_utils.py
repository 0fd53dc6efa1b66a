"""
Timestamp utilities for consistent time handling across the simulation.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Convert datetime to ISO-8601 string.

    Args:
        value: datetime to convert (None passes through)

    Returns:
        ISO-8601 string or None
    """
    if value is None:
        return None
    return value.isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string, accepting the trailing 'Z' UTC designator.

    Args:
        value: ISO-8601 string (None passes through)

    Returns:
        datetime object or None

    Raises:
        ValueError: If the string is not a valid timestamp
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f'Expected ISO-8601 string, got {type(value).__name__}')
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    return datetime.fromisoformat(value)


def days_after(start: datetime, days: float) -> datetime:
    """Expiration timestamp a number of days after start."""
    return start + timedelta(days=days)
