"""Dataclasses for the rows handled by the focus analytics engine.

Raw data:
- Session: one timed focus interval, open until finalized
- AppUsage: foreground time of one app inside one session
- DailyMobileUsage: device-wide usage sample for one date
- Schedule: recurring focus window consumed by the external trigger

Derived data (rollups, keyed by a canonical period key):
- DailyStats, WeeklyStats, MonthlyStats

All durations are integer seconds; timestamps are naive local datetimes.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .errors import IntegrityError


@dataclass
class Session:
    """A single focus session.

    ``completed`` is False when the session was interrupted before its
    scheduled end. ``end_time`` stays None while the session is open.
    """
    start_time: datetime
    end_time: Optional[datetime] = None
    actual_duration: int = 0
    completed: bool = False
    focus_score: float = 0.0
    target_duration: int = 0
    source: str = "manual"  # "manual" or "schedule:<name>"
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def is_interrupted(self) -> bool:
        return not self.is_open and not self.completed

    def validate(self) -> None:
        """Check the timing fields for internal consistency.

        Raises:
            IntegrityError: If any field is out of range or the finalized
                times contradict the recorded duration.
        """
        if not 0.0 <= self.focus_score <= 1.0:
            raise IntegrityError(f"focus_score must be within 0.0-1.0, got {self.focus_score}")
        if self.actual_duration < 0 or self.target_duration < 0:
            raise IntegrityError("durations must not be negative")
        if self.end_time is None:
            return
        if self.end_time < self.start_time:
            raise IntegrityError(
                f"end_time {self.end_time.isoformat()} precedes start_time {self.start_time.isoformat()}"
            )
        elapsed = (self.end_time - self.start_time).total_seconds()
        if self.actual_duration > elapsed:
            raise IntegrityError(
                f"actual_duration {self.actual_duration}s exceeds elapsed time {int(elapsed)}s"
            )


@dataclass
class AppUsage:
    """Foreground time of one app during one session.

    ``session_id`` is assigned by the store when the owning session is
    written; callers leave it as None.
    """
    package_name: str
    usage_time: int
    is_whitelisted: bool = False
    app_name: Optional[str] = None
    session_id: Optional[int] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def usage_percentage(self, total_session_time: int) -> float:
        if total_session_time <= 0:
            return 0.0
        return self.usage_time / total_session_time * 100


@dataclass
class PeriodSummary:
    """Aggregate over all sessions whose start time falls in one period.

    ``avg_focus_score`` is None only for an empty period, and empty periods
    are never persisted, so a stored row always has at least one session.
    """
    key: str
    total_sessions: int
    total_focus_time: int
    completed_sessions: int
    interrupted_sessions: int
    avg_focus_score: Optional[float]
    total_whitelisted_time: int
    # Sum of the daily_mobile_usage samples dated inside the period
    total_mobile_usage: int = 0

    @property
    def completion_rate(self) -> Optional[float]:
        if self.total_sessions == 0:
            return None
        return self.completed_sessions / self.total_sessions * 100

    @property
    def average_session_duration(self) -> Optional[int]:
        if self.total_sessions == 0:
            return None
        return self.total_focus_time // self.total_sessions

    @property
    def actual_locked_time(self) -> int:
        return self.total_focus_time - self.total_whitelisted_time

    @property
    def time_saved_percentage(self) -> Optional[float]:
        """Focus time as a share of device usage, None without usage samples."""
        if self.total_mobile_usage <= 0:
            return None
        return self.total_focus_time / self.total_mobile_usage * 100


@dataclass
class DailyStats(PeriodSummary):
    """Rollup for one date (``key`` is YYYY-MM-DD)."""

    @property
    def date(self) -> str:
        return self.key


@dataclass
class WeeklyStats(PeriodSummary):
    """Rollup for one ISO week (``key`` is YYYY-Www)."""
    avg_daily_focus_time: int = 0
    best_day_date: Optional[str] = None
    best_day_focus_time: int = 0
    active_days: int = 0

    @property
    def week_key(self) -> str:
        return self.key


@dataclass
class MonthlyStats(PeriodSummary):
    """Rollup for one calendar month (``key`` is YYYY-MM).

    ``avg_weekly_focus_time`` divides the month's focus time by the number
    of ISO weeks the month overlaps, active or not.
    """
    avg_daily_focus_time: int = 0
    avg_weekly_focus_time: int = 0
    best_week_key: Optional[str] = None
    best_week_focus_time: int = 0
    active_days: int = 0

    @property
    def month_key(self) -> str:
        return self.key


@dataclass
class DailyMobileUsage:
    """Raw device-wide usage for one date, kept in a fixed-size window."""
    date: str
    total_mobile_usage: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


REPEAT_TYPES = ("ONCE", "DAILY", "WEEKLY")
_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


@dataclass
class Schedule:
    """Recurring focus window definition.

    Times are stored as "HH:MM" strings and repeat days as ISO weekday
    numbers (1=Monday ... 7=Sunday). Only structural validation happens
    here; the trigger mechanism interprets the schedule.
    """
    name: str
    start_time: str
    end_time: str
    repeat_days: List[int] = field(default_factory=list)
    repeat_type: str = "WEEKLY"
    enabled: bool = True
    pre_notify_enabled: bool = False
    pre_notify_minutes: int = 0
    id: Optional[int] = None

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise IntegrityError("schedule name must not be empty")
        for label, value in (("start_time", self.start_time), ("end_time", self.end_time)):
            if not isinstance(value, str) or not _HHMM.match(value):
                raise IntegrityError(f"{label} must be HH:MM, got {value!r}")
        if self.start_time > self.end_time:
            raise IntegrityError(
                f"start_time {self.start_time} is after end_time {self.end_time}"
            )
        if self.repeat_type not in REPEAT_TYPES:
            raise IntegrityError(f"repeat_type must be one of {REPEAT_TYPES}, got {self.repeat_type!r}")
        bad_days = [d for d in self.repeat_days if not 1 <= d <= 7]
        if bad_days:
            raise IntegrityError(f"repeat_days must be ISO weekdays 1-7, got {bad_days}")
        if self.pre_notify_minutes < 0:
            raise IntegrityError("pre_notify_minutes must not be negative")


def format_duration(seconds: Optional[int]) -> str:
    """Render a duration as "1h 5m", "12m" or "40s".

    None renders as "no sessions yet" so absent data never reads as zero.
    """
    if seconds is None:
        return "no sessions yet"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m"
    return f"{secs}s"
