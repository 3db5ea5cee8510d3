from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

# SQLite's datetime('now') format; lexical order == chronological order
DB_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(DB_FORMAT)


def db_now() -> str:
    return to_db(utc_now())


def db_ago(*, hours: float = 0, days: float = 0, minutes: float = 0) -> str:
    """Cutoff timestamp in DB format, `hours`/`days`/`minutes` before now."""
    return to_db(utc_now() - timedelta(hours=hours, days=days, minutes=minutes))


def db_in(seconds: float) -> str:
    return to_db(utc_now() + timedelta(seconds=seconds))


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from a producer payload; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
