from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
