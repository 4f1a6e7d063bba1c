from __future__ import annotations

from datetime import datetime, timezone

from newsdesk.timeutils import format_current_time_central, week_window

# 2024-11-29 22:59:10 UTC is 4:59:10 PM in Chicago
FRIDAY = datetime(2024, 11, 29, 22, 59, 10, tzinfo=timezone.utc)


def test_submission_format() -> None:
	assert format_current_time_central("submission", now=FRIDAY) == "11/29/24 at 4:59:10 PM"


def test_session_format() -> None:
	assert format_current_time_central("session", now=FRIDAY) == "November 29 2024 at 4:59:10 PM"


def test_default_format() -> None:
	assert format_current_time_central(now=FRIDAY) == "11/29/24 4:59:10 PM"


def test_midnight_hour_is_twelve() -> None:
	just_after_midnight = datetime(2024, 11, 29, 6, 5, 0, tzinfo=timezone.utc)
	assert format_current_time_central("submission", now=just_after_midnight) == "11/29/24 at 12:05:00 AM"


def test_week_window_mid_week() -> None:
	start, end = week_window(now=FRIDAY)
	assert (start.year, start.month, start.day, start.hour) == (2024, 11, 17, 0)
	assert (end.year, end.month, end.day, end.hour) == (2024, 11, 24, 0)
	assert start.weekday() == end.weekday() == 6


def test_week_window_on_sunday() -> None:
	sunday_morning = datetime(2024, 11, 24, 15, 0, tzinfo=timezone.utc)
	start, end = week_window(now=sunday_morning)
	assert (start.month, start.day) == (11, 17)
	assert (end.month, end.day) == (11, 24)


def test_week_window_across_dst_change() -> None:
	# DST ended Sunday 2024-11-03 in Chicago, so last week ran an hour long
	start, end = week_window(now=datetime(2024, 11, 13, 18, 0, tzinfo=timezone.utc))
	assert (start.month, start.day, start.hour) == (11, 3, 0)
	assert (end.month, end.day, end.hour) == (11, 10, 0)
	assert end.timestamp() - start.timestamp() == 7 * 24 * 3600 + 3600
