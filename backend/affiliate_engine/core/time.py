from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    # Naive UTC; every DateTime column in the schema is timezone-naive.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
