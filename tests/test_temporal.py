"""
Tests for due-date classification and the status suppression rule.
"""
from datetime import date, datetime, timezone, timedelta
from zoneinfo import ZoneInfo

import pytest

from pkg.planner.schema import TaskStatus
from pkg.planner.temporal import (
    DueClass,
    classify_due_date,
    counts_as_overdue,
    is_actionable,
    local_day,
    local_now,
    parse_timestamp,
    within_days,
)

NOW = datetime(2024, 6, 15, 9, 0, 0)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# classify_due_date
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.mark.parametrize("due,expected", [
    (datetime(2024, 6, 14, 23, 59), DueClass.OVERDUE),
    (datetime(2024, 6, 15, 0, 1), DueClass.TODAY),
    (datetime(2024, 6, 15, 23, 59), DueClass.TODAY),
    (datetime(2024, 6, 16, 0, 0), DueClass.TOMORROW),
    (datetime(2024, 6, 20, 0, 0), DueClass.FUTURE),
    (datetime(2023, 1, 1), DueClass.OVERDUE),
])
def test_classify_by_calendar_day(due, expected):
    assert classify_due_date(due, NOW) == expected


@pytest.mark.parametrize("now", [NOW, datetime(1999, 12, 31, 23, 59), local_now()])
def test_no_due_date(now):
    assert classify_due_date(None, now) == DueClass.NO_DUE_DATE


def test_twenty_hours_ahead_is_not_automatically_tomorrow():
    """Only the calendar date matters, not the distance in hours"""
    early = datetime(2024, 6, 15, 1, 0)
    assert classify_due_date(early + timedelta(hours=20), early) == DueClass.TODAY
    late = datetime(2024, 6, 15, 22, 0)
    assert classify_due_date(late + timedelta(hours=20), late) == DueClass.TOMORROW


def test_date_only_values():
    assert classify_due_date(date(2024, 6, 15), NOW) == DueClass.TODAY
    assert classify_due_date(date(2024, 6, 14), NOW) == DueClass.OVERDUE
    assert classify_due_date(date(2024, 6, 16), NOW) == DueClass.TOMORROW


def test_aware_due_converted_to_now_zone():
    """23:30 UTC on the 14th is already the 15th in Sydney"""
    sydney = ZoneInfo("Australia/Sydney")
    now = datetime(2024, 6, 15, 9, 0, tzinfo=sydney)
    due = datetime(2024, 6, 14, 23, 30, tzinfo=timezone.utc)
    assert classify_due_date(due, now) == DueClass.TODAY


def test_aware_due_in_earlier_zone():
    """01:00 UTC on the 15th is still the 14th in New York"""
    new_york = ZoneInfo("America/New_York")
    now = datetime(2024, 6, 15, 9, 0, tzinfo=new_york)
    due = datetime(2024, 6, 15, 1, 0, tzinfo=timezone.utc)
    assert classify_due_date(due, now) == DueClass.OVERDUE


def test_classify_is_pure():
    due = datetime(2024, 6, 14, 12, 0)
    assert classify_due_date(due, NOW) == classify_due_date(due, NOW)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Status suppression
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_done_task_past_due_is_not_overdue():
    """The classifier reports Overdue; the status rule suppresses it"""
    due_class = classify_due_date(datetime(2024, 6, 10), NOW)
    assert due_class == DueClass.OVERDUE
    assert not counts_as_overdue(due_class, TaskStatus.DONE)
    assert counts_as_overdue(due_class, TaskStatus.TODO)


def test_blocked_is_not_actionable():
    assert not is_actionable(TaskStatus.BLOCKED)
    assert not is_actionable("Done")
    assert is_actionable("Doing")
    assert is_actionable(TaskStatus.INBOX)


def test_non_overdue_class_never_counts():
    assert not counts_as_overdue(DueClass.TODAY, TaskStatus.TODO)
    assert not counts_as_overdue(DueClass.NO_DUE_DATE, TaskStatus.TODO)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_parse_timestamp():
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None
    assert parse_timestamp("2024-06-15") == date(2024, 6, 15)
    assert parse_timestamp("2024-06-15T09:30:00") == datetime(2024, 6, 15, 9, 30)
    parsed = parse_timestamp("2024-06-15T09:30:00Z")
    assert parsed.tzinfo is not None
    assert parsed.utcoffset() == timedelta(0)


def test_parse_timestamp_passthrough():
    value = datetime(2024, 6, 15, 9, 30)
    assert parse_timestamp(value) is value


def test_parse_timestamp_rejects_garbage():
    with pytest.raises(ValueError):
        parse_timestamp("next tuesday")


def test_local_day_naive():
    assert local_day(datetime(2024, 6, 15, 23, 59), NOW) == date(2024, 6, 15)


def test_local_now_is_aware():
    assert local_now().tzinfo is not None
    assert local_now("Europe/London").tzinfo is not None


def test_within_days():
    assert within_days(datetime(2024, 6, 15, 20, 0), NOW, 7)
    assert within_days(datetime(2024, 6, 21), NOW, 7)
    assert not within_days(datetime(2024, 6, 22), NOW, 7)
    assert not within_days(datetime(2024, 6, 14), NOW, 7)
    assert not within_days(None, NOW, 7)
