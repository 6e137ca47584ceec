from __future__ import annotations
"""UTC time helpers.

SQLite hands back naive datetimes even for ``DateTime(timezone=True)`` columns,
so every comparison between stored and fresh timestamps goes through
``as_utc`` first.
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_z(dt: Optional[datetime]) -> Optional[str]:
    dt = as_utc(dt)
    return dt.isoformat().replace('+00:00', 'Z') if dt else None


__all__ = ['utcnow', 'as_utc', 'isoformat_z']
