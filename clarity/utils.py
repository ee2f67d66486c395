from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from pathlib import Path
from typing import Tuple


def ensure_directory(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc).replace(microsecond=0)


def to_utc(ts: datetime) -> datetime:
    """Normalize to UTC at second precision. Naive values are taken as UTC."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).replace(microsecond=0)


def format_ts(ts: datetime) -> str:
    return to_utc(ts).isoformat()


def parse_ts(raw: str) -> datetime:
    # SQLite CURRENT_TIMESTAMP yields "YYYY-MM-DD HH:MM:SS" without offset.
    return to_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))


def day_bounds(day: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    """Return the UTC half-open interval covering a local calendar day."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return to_utc(start), to_utc(end)


def local_today(tz: tzinfo) -> date:
    return datetime.now(tz=tz).date()


def parse_date(raw: str) -> date:
    return datetime.strptime(raw, "%Y-%m-%d").date()


def timestamp_slug(ts: datetime) -> str:
    return ts.strftime("%Y%m%d_%H%M%S")
