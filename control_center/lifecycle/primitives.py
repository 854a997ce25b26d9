"""
Common primitives shared across the lifecycle core.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional


def generate_id() -> str:
    """Generate a UUID4 string for row identifiers."""
    return str(uuid.uuid4())


def public_id_from_uuid(value: str) -> str:
    """Return the 8-hex public id (first UUID group, lowercase)."""
    return value.replace("-", "")[:8].lower()


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Render a datetime as an ISO-8601 UTC string."""
    value = as_utc(value)
    return value.isoformat() if value else None
