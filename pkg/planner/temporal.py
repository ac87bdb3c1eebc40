"""
Due-date classification.

Buckets a due date into NoDueDate / Overdue / Today / Tomorrow / Future
relative to an injected "now", by calendar day in one local timezone.

Whether an overdue date actually counts as overdue work depends on the
task status; that decision lives in counts_as_overdue() so the two can be
tested apart.
"""
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Union
from zoneinfo import ZoneInfo

Timestamp = Union[datetime, date]

# Statuses that never surface in overdue/upcoming views
INACTIVE_STATUSES = ("Done", "Blocked")


class DueClass(Enum):
    """User-facing urgency buckets."""
    NO_DUE_DATE = "NoDueDate"
    OVERDUE = "Overdue"
    TODAY = "Today"
    TOMORROW = "Tomorrow"
    FUTURE = "Future"


def local_now(tz_name: Optional[str] = None) -> datetime:
    """Wall clock for the views. Aware, in `tz_name` or the system zone."""
    if tz_name:
        return datetime.now(ZoneInfo(tz_name))
    return datetime.now().astimezone()


def parse_timestamp(value) -> Optional[Timestamp]:
    """Parse an ISO string (or pass through a date/datetime). Empty → None."""
    if value is None or value == "":
        return None
    if isinstance(value, (datetime, date)):
        return value
    text = str(value).strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    return datetime.fromisoformat(text)


def local_day(ts: Timestamp, now: datetime) -> date:
    """Calendar day of `ts` in the timezone of `now`."""
    if not isinstance(ts, datetime):
        return ts
    if ts.tzinfo is not None:
        if now.tzinfo is not None:
            ts = ts.astimezone(now.tzinfo)
        else:
            # naive now means system-local wall time
            ts = ts.astimezone().replace(tzinfo=None)
    return ts.date()


def classify_due_date(due: Optional[Timestamp], now: datetime) -> DueClass:
    """
    Classify `due` against `now` by calendar day only.

    A task due at 23:59 yesterday is Overdue even if it is only minutes
    past; one due 20 hours from now is Today or Tomorrow depending solely on
    its date.
    """
    if due is None:
        return DueClass.NO_DUE_DATE
    today = local_day(now, now)
    day = local_day(due, now)
    if day < today:
        return DueClass.OVERDUE
    if day == today:
        return DueClass.TODAY
    if day == today + timedelta(days=1):
        return DueClass.TOMORROW
    return DueClass.FUTURE


def is_actionable(status) -> bool:
    """Done and Blocked work is left out of upcoming/overdue views."""
    status = getattr(status, "value", status)
    return status not in INACTIVE_STATUSES


def counts_as_overdue(due_class: DueClass, status) -> bool:
    """An Overdue date only counts when the task is still outstanding."""
    return due_class == DueClass.OVERDUE and is_actionable(status)


def within_days(due: Optional[Timestamp], now: datetime, days: int) -> bool:
    """True if `due` falls on today or one of the next `days - 1` days."""
    if due is None:
        return False
    offset = (local_day(due, now) - local_day(now, now)).days
    return 0 <= offset < days
