"""Typed read queries.

Each read shape the engine offers (one-shot or live) is a small object
with a ``name`` and a ``run(conn)`` method. ``Query`` wraps a single
SELECT plus a row mapper; ``FunctionQuery`` wraps an arbitrary read over
one connection, used for aggregates that issue several SELECTs.

Queries never declare which tables they depend on. FocusStorage records
the tables a query actually reads while running it, and the live query
registry uses that record for invalidation.
"""

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence

from .models import (
    AppUsage,
    DailyMobileUsage,
    DailyStats,
    MonthlyStats,
    Schedule,
    Session,
    WeeklyStats,
)
from .periods import DAILY, period_bounds, to_datetime

RowMapper = Callable[[List[sqlite3.Row]], Any]


@dataclass(frozen=True)
class Query:
    """A single parameterized SELECT and the mapper applied to its rows."""
    name: str
    sql: str
    params: tuple
    mapper: RowMapper

    def run(self, conn: sqlite3.Connection) -> Any:
        cursor = conn.execute(self.sql, self.params)
        return self.mapper(cursor.fetchall())


@dataclass(frozen=True)
class FunctionQuery:
    """A composite read expressed as a function of one connection."""
    name: str
    fn: Callable[[sqlite3.Connection], Any]

    def run(self, conn: sqlite3.Connection) -> Any:
        return self.fn(conn)


# =========================================================================
# Value encoding
# =========================================================================

def encode_timestamp(value) -> Optional[str]:
    """Store timestamps as ISO-8601 text with fixed microsecond precision.

    The fixed width keeps lexicographic order equal to chronological order.
    """
    if value is None:
        return None
    return to_datetime(value).isoformat(timespec="microseconds")


def decode_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def encode_days(days: Sequence[int]) -> str:
    return ",".join(str(int(d)) for d in days)


def decode_days(value: Optional[str]) -> List[int]:
    if not value:
        return []
    return [int(part) for part in value.split(",") if part.strip()]


# =========================================================================
# Row mappers
# =========================================================================

def row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        start_time=decode_timestamp(row["start_time"]),
        end_time=decode_timestamp(row["end_time"]),
        actual_duration=row["actual_duration"],
        completed=bool(row["completed"]),
        focus_score=row["focus_score"],
        target_duration=row["target_duration"],
        source=row["source"],
        created_at=decode_timestamp(row["created_at"]),
    )


def row_to_usage(row: sqlite3.Row) -> AppUsage:
    return AppUsage(
        id=row["id"],
        session_id=row["session_id"],
        package_name=row["package_name"],
        app_name=row["app_name"],
        usage_time=row["usage_time"],
        is_whitelisted=bool(row["is_whitelisted"]),
        created_at=decode_timestamp(row["created_at"]),
    )


def _summary_fields(row: sqlite3.Row, key_column: str) -> dict:
    return dict(
        key=row[key_column],
        total_sessions=row["total_sessions"],
        total_focus_time=row["total_focus_time"],
        completed_sessions=row["completed_sessions"],
        interrupted_sessions=row["interrupted_sessions"],
        avg_focus_score=row["avg_focus_score"],
        total_whitelisted_time=row["total_whitelisted_time"],
        total_mobile_usage=row["total_mobile_usage"],
    )


def row_to_daily_stats(row: sqlite3.Row) -> DailyStats:
    return DailyStats(**_summary_fields(row, "date"))


def row_to_weekly_stats(row: sqlite3.Row) -> WeeklyStats:
    return WeeklyStats(
        avg_daily_focus_time=row["avg_daily_focus_time"],
        best_day_date=row["best_day_date"],
        best_day_focus_time=row["best_day_focus_time"],
        active_days=row["active_days"],
        **_summary_fields(row, "week_key"),
    )


def row_to_monthly_stats(row: sqlite3.Row) -> MonthlyStats:
    return MonthlyStats(
        avg_daily_focus_time=row["avg_daily_focus_time"],
        avg_weekly_focus_time=row["avg_weekly_focus_time"],
        best_week_key=row["best_week_key"],
        best_week_focus_time=row["best_week_focus_time"],
        active_days=row["active_days"],
        **_summary_fields(row, "month_key"),
    )


def row_to_mobile_usage(row: sqlite3.Row) -> DailyMobileUsage:
    return DailyMobileUsage(
        date=row["date"],
        total_mobile_usage=row["total_mobile_usage"],
        created_at=decode_timestamp(row["created_at"]),
        updated_at=decode_timestamp(row["updated_at"]),
    )


def row_to_schedule(row: sqlite3.Row) -> Schedule:
    return Schedule(
        id=row["id"],
        name=row["name"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        repeat_days=decode_days(row["repeat_days"]),
        repeat_type=row["repeat_type"],
        enabled=bool(row["enabled"]),
        pre_notify_enabled=bool(row["pre_notify_enabled"]),
        pre_notify_minutes=row["pre_notify_minutes"],
    )


def one(mapper: Callable[[sqlite3.Row], Any]) -> RowMapper:
    return lambda rows: mapper(rows[0]) if rows else None


def many(mapper: Callable[[sqlite3.Row], Any]) -> RowMapper:
    return lambda rows: [mapper(row) for row in rows]


def scalar(rows: List[sqlite3.Row]) -> Any:
    """First column of the first row; aggregates over no rows give None."""
    return rows[0][0] if rows else None


# =========================================================================
# Session and app usage queries
# =========================================================================

SESSION_COLUMNS = """
    SELECT id, start_time, end_time, target_duration, actual_duration,
           completed, focus_score, source, created_at
    FROM sessions
"""

USAGE_COLUMNS = """
    SELECT id, session_id, package_name, app_name, usage_time,
           is_whitelisted, created_at
    FROM app_usage
"""


def session_by_id(session_id: int) -> Query:
    return Query("session_by_id", SESSION_COLUMNS + " WHERE id = ?",
                 (session_id,), one(row_to_session))


def sessions_for_date(date: str) -> Query:
    start, end = period_bounds(DAILY, date)
    return Query(
        "sessions_for_date",
        SESSION_COLUMNS + " WHERE start_time >= ? AND start_time < ? ORDER BY start_time DESC, id DESC",
        (encode_timestamp(start), encode_timestamp(end)),
        many(row_to_session),
    )


def sessions_in_range(start, end) -> Query:
    """Sessions whose start time lies in ``[start, end]``, newest first."""
    return Query(
        "sessions_in_range",
        SESSION_COLUMNS + " WHERE start_time >= ? AND start_time <= ? ORDER BY start_time DESC, id DESC",
        (encode_timestamp(start), encode_timestamp(end)),
        many(row_to_session),
    )


def recent_sessions(limit: int) -> Query:
    return Query(
        "recent_sessions",
        SESSION_COLUMNS + " ORDER BY start_time DESC, id DESC LIMIT ?",
        (limit,),
        many(row_to_session),
    )


def active_session() -> Query:
    return Query(
        "active_session",
        SESSION_COLUMNS + " WHERE end_time IS NULL ORDER BY start_time DESC LIMIT 1",
        (),
        one(row_to_session),
    )


def app_usage_for_session(session_id: int) -> Query:
    return Query(
        "app_usage_for_session",
        USAGE_COLUMNS + " WHERE session_id = ? ORDER BY usage_time DESC, id",
        (session_id,),
        many(row_to_usage),
    )


def session_count() -> Query:
    return Query("session_count", "SELECT COUNT(id) FROM sessions", (), scalar)


def total_focus_time() -> Query:
    return Query("total_focus_time", "SELECT SUM(actual_duration) FROM sessions", (), scalar)


def last_session_time() -> Query:
    return Query("last_session_time", "SELECT MAX(start_time) FROM sessions", (),
                 lambda rows: decode_timestamp(scalar(rows)))


def total_active_days() -> Query:
    """Distinct local dates with at least one session, over all history."""
    return Query("total_active_days",
                 "SELECT COUNT(DISTINCT substr(start_time, 1, 10)) FROM sessions",
                 (), scalar)


def total_focus_time_for_period(start, end) -> Query:
    """Focus time of sessions lying wholly inside ``[start, end]``.

    Open sessions have no end time and are never counted.
    """
    return Query(
        "total_focus_time_for_period",
        "SELECT SUM(actual_duration) FROM sessions WHERE start_time >= ? AND end_time <= ?",
        (encode_timestamp(start), encode_timestamp(end)),
        scalar,
    )


# =========================================================================
# Rollup queries
# =========================================================================

DAILY_STATS_COLUMNS = """
    SELECT date, total_sessions, total_focus_time, completed_sessions,
           interrupted_sessions, avg_focus_score, total_whitelisted_time,
           total_mobile_usage
    FROM daily_stats
"""

WEEKLY_STATS_COLUMNS = """
    SELECT week_key, total_sessions, total_focus_time, completed_sessions,
           interrupted_sessions, avg_focus_score, total_whitelisted_time,
           total_mobile_usage, avg_daily_focus_time, best_day_date,
           best_day_focus_time, active_days
    FROM weekly_stats
"""

MONTHLY_STATS_COLUMNS = """
    SELECT month_key, total_sessions, total_focus_time, completed_sessions,
           interrupted_sessions, avg_focus_score, total_whitelisted_time,
           total_mobile_usage, avg_daily_focus_time, avg_weekly_focus_time,
           best_week_key, best_week_focus_time, active_days
    FROM monthly_stats
"""


def daily_stats(date: str) -> Query:
    return Query("daily_stats", DAILY_STATS_COLUMNS + " WHERE date = ?",
                 (date,), one(row_to_daily_stats))


def daily_stats_range(start_date: str, end_date: str) -> Query:
    return Query(
        "daily_stats_range",
        DAILY_STATS_COLUMNS + " WHERE date >= ? AND date <= ? ORDER BY date",
        (start_date, end_date),
        many(row_to_daily_stats),
    )


def weekly_stats(week_key: str) -> Query:
    return Query("weekly_stats", WEEKLY_STATS_COLUMNS + " WHERE week_key = ?",
                 (week_key,), one(row_to_weekly_stats))


def recent_weekly_stats(limit: int) -> Query:
    return Query("recent_weekly_stats",
                 WEEKLY_STATS_COLUMNS + " ORDER BY week_key DESC LIMIT ?",
                 (limit,), many(row_to_weekly_stats))


def monthly_stats(month_key: str) -> Query:
    return Query("monthly_stats", MONTHLY_STATS_COLUMNS + " WHERE month_key = ?",
                 (month_key,), one(row_to_monthly_stats))


def recent_monthly_stats(limit: int) -> Query:
    return Query("recent_monthly_stats",
                 MONTHLY_STATS_COLUMNS + " ORDER BY month_key DESC LIMIT ?",
                 (limit,), many(row_to_monthly_stats))


STATS_QUERIES = {
    "daily": daily_stats,
    "weekly": weekly_stats,
    "monthly": monthly_stats,
}


# =========================================================================
# Mobile usage and schedule queries
# =========================================================================

MOBILE_USAGE_COLUMNS = """
    SELECT date, total_mobile_usage, created_at, updated_at
    FROM daily_mobile_usage
"""

SCHEDULE_COLUMNS = """
    SELECT id, name, start_time, end_time, repeat_days, repeat_type,
           enabled, pre_notify_enabled, pre_notify_minutes
    FROM schedules
"""


def daily_mobile_usage(date: str) -> Query:
    return Query("daily_mobile_usage", MOBILE_USAGE_COLUMNS + " WHERE date = ?",
                 (date,), one(row_to_mobile_usage))


def recent_daily_mobile_usage(limit: int) -> Query:
    return Query("recent_daily_mobile_usage",
                 MOBILE_USAGE_COLUMNS + " ORDER BY date DESC LIMIT ?",
                 (limit,), many(row_to_mobile_usage))


def daily_mobile_usage_range(start_date: str, end_date: str) -> Query:
    return Query(
        "daily_mobile_usage_range",
        MOBILE_USAGE_COLUMNS + " WHERE date >= ? AND date <= ? ORDER BY date DESC",
        (start_date, end_date),
        many(row_to_mobile_usage),
    )


def daily_mobile_usage_count() -> Query:
    return Query("daily_mobile_usage_count", "SELECT COUNT(*) FROM daily_mobile_usage",
                 (), scalar)


def oldest_daily_mobile_usage_date() -> Query:
    return Query("oldest_daily_mobile_usage_date",
                 "SELECT MIN(date) FROM daily_mobile_usage", (), scalar)


def newest_daily_mobile_usage_date() -> Query:
    return Query("newest_daily_mobile_usage_date",
                 "SELECT MAX(date) FROM daily_mobile_usage", (), scalar)


def mobile_usage_total(start_date: str, end_date: str) -> Query:
    """Summed samples for dates in the half-open range ``[start_date, end_date)``."""
    return Query(
        "mobile_usage_total",
        "SELECT COALESCE(SUM(total_mobile_usage), 0) FROM daily_mobile_usage "
        "WHERE date >= ? AND date < ?",
        (start_date, end_date),
        scalar,
    )


def all_schedules() -> Query:
    return Query("all_schedules", SCHEDULE_COLUMNS + " ORDER BY id ASC",
                 (), many(row_to_schedule))


def enabled_schedules() -> Query:
    return Query("enabled_schedules",
                 SCHEDULE_COLUMNS + " WHERE enabled = 1 ORDER BY id ASC",
                 (), many(row_to_schedule))


def schedule_by_id(schedule_id: int) -> Query:
    return Query("schedule_by_id", SCHEDULE_COLUMNS + " WHERE id = ? LIMIT 1",
                 (schedule_id,), one(row_to_schedule))
