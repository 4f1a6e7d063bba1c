from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "America/Chicago"


def _local_now(tz_name: str, now: Optional[datetime]) -> datetime:
	tz = ZoneInfo(tz_name)
	if now is None:
		return datetime.now(tz)
	if now.tzinfo is None:
		return now.replace(tzinfo=tz)
	return now.astimezone(tz)


def _clock(dt: datetime) -> str:
	return f"{dt.hour % 12 or 12}:{dt:%M:%S} {dt:%p}"


def format_current_time_central(
	kind: str = "",
	tz_name: str = DEFAULT_TIMEZONE,
	now: Optional[datetime] = None,
) -> str:
	"""
	Format the current wall-clock time for humans.
	- "submission": 11/29/24 at 4:59:10 PM
	- "session": November 29 2024 at 4:59:10 PM
	- anything else: 11/29/24 4:59:10 PM
	"""
	dt = _local_now(tz_name, now)
	if kind == "submission":
		return f"{dt:%m/%d/%y} at {_clock(dt)}"
	if kind == "session":
		return f"{dt:%B %d %Y} at {_clock(dt)}"
	return f"{dt:%m/%d/%y} {_clock(dt)}"


def week_window(tz_name: str = DEFAULT_TIMEZONE, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
	"""Return (previous Sunday 00:00, current Sunday 00:00) in the given timezone."""
	dt = _local_now(tz_name, now)
	days_since_sunday = (dt.weekday() + 1) % 7
	midnight = dt.replace(hour=0, minute=0, second=0, microsecond=0)
	# Aware arithmetic is wall-clock here, so both ends stay on local midnight across DST
	current_start = midnight - timedelta(days=days_since_sunday)
	previous_start = current_start - timedelta(days=7)
	return previous_start, current_start


def to_epoch_ms(dt: datetime) -> int:
	return int(dt.timestamp() * 1000)
