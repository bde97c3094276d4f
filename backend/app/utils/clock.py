"""Wall-clock helpers.

All timestamps are handled as timezone-aware UTC. Backends that drop tzinfo
(SQLite) hand back naive values, which are UTC by construction here.
"""
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime, or convert an aware one to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def civil_date(moment: datetime, tz_name: str) -> date:
    """Calendar date of `moment` as seen in `tz_name`."""
    return ensure_utc(moment).astimezone(ZoneInfo(tz_name)).date()


def check_in_window(
    starts_at: datetime, before_minutes: int, during_minutes: int
) -> tuple[datetime, datetime]:
    """Return (opens_at, closes_at) for an event starting at `starts_at`."""
    start = ensure_utc(starts_at)
    return (
        start - timedelta(minutes=before_minutes),
        start + timedelta(minutes=during_minutes),
    )


def compare_to_window(moment: datetime, opens_at: datetime, closes_at: datetime) -> int:
    """-1 before the window, 0 inside (bounds inclusive), 1 after."""
    moment = ensure_utc(moment)
    if moment < ensure_utc(opens_at):
        return -1
    if moment > ensure_utc(closes_at):
        return 1
    return 0
