"""Period rollups over the session log.

The aggregator turns raw sessions and app usage into DailyStats,
WeeklyStats and MonthlyStats. A period is resolved to a half-open time
range with explicit calendar arithmetic (see ``periods``), the sessions
starting in that range are scanned, each row is re-bucketed in Python and
the usual reductions are applied.

Refreshing a period computes and upserts inside a single write
transaction, so a refresh can never overwrite a newer rollup with one
computed from stale rows. Empty periods never get a cached row: an
existing row for a period that has become empty is removed, which keeps
"no data" distinguishable from "computed, all zero".

Example:
    >>> aggregator = PeriodAggregator(storage)
    >>> aggregator.refresh_daily("2024-01-01")
    DailyStats(key='2024-01-01', total_sessions=2, ...)
    >>> aggregator.completion_rate("daily", "2024-01-01")
    50.0
"""

import logging
import sqlite3
from collections import defaultdict
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from . import queries
from .config import AggregationConfig
from .errors import RefreshCancelled
from .models import DailyStats, MonthlyStats, PeriodSummary, WeeklyStats
from .periods import (
    DAILY,
    MONTHLY,
    PERIOD_KINDS,
    WEEKLY,
    date_key,
    days_in_period,
    month_key,
    period_bounds,
    period_key,
    to_datetime,
    validate_key,
    week_key,
)
from .queries import FunctionQuery, decode_timestamp, encode_timestamp
from .storage import FocusStorage

logger = logging.getLogger(__name__)

# Average focus scores are stored rounded so repeated refreshes are stable
SCORE_PRECISION = 4


class PeriodAggregator:
    """Compute, cache and query period rollups.

    Attributes:
        storage: FocusStorage holding sessions and rollups
        config: AggregationConfig (progress_interval is used for cancellation)
    """

    def __init__(self, storage: FocusStorage, config: Optional[AggregationConfig] = None):
        self.storage = storage
        self.config = config or AggregationConfig()

    # =========================================================================
    # Computation
    # =========================================================================

    def _scan_sessions(self, conn: sqlite3.Connection, kind: str, key: str) -> List[sqlite3.Row]:
        start, end = period_bounds(kind, key)
        cursor = conn.execute(
            """
            SELECT id, start_time, actual_duration, completed, focus_score
            FROM sessions
            WHERE start_time >= ? AND start_time < ? AND end_time IS NOT NULL
            ORDER BY start_time, id
            """,
            (encode_timestamp(start), encode_timestamp(end)),
        )
        return [row for row in cursor.fetchall()
                if period_key(kind, decode_timestamp(row["start_time"])) == key]

    def _whitelisted_time(self, conn: sqlite3.Connection, kind: str, key: str,
                          session_ids: set) -> int:
        start, end = period_bounds(kind, key)
        cursor = conn.execute(
            """
            SELECT a.session_id, a.usage_time
            FROM app_usage a
            JOIN sessions s ON s.id = a.session_id
            WHERE s.start_time >= ? AND s.start_time < ? AND a.is_whitelisted = 1
            """,
            (encode_timestamp(start), encode_timestamp(end)),
        )
        return sum(row["usage_time"] for row in cursor.fetchall()
                   if row["session_id"] in session_ids)

    def _compute(self, conn: sqlite3.Connection, kind: str, key: str,
                 should_cancel: Callable[[], bool] = None) -> Optional[PeriodSummary]:
        """Aggregate one period over an open connection.

        Returns:
            The rollup, or None when no finalized session starts in the period.
        """
        validate_key(kind, key)
        rows = self._scan_sessions(conn, kind, key)
        if should_cancel is not None and should_cancel():
            raise RefreshCancelled(f"Refresh of {kind} {key} superseded")
        if not rows:
            return None

        total = len(rows)
        completed = sum(1 for row in rows if row["completed"])
        focus_time = sum(row["actual_duration"] for row in rows)
        avg_score = round(sum(row["focus_score"] for row in rows) / total, SCORE_PRECISION)
        whitelisted = self._whitelisted_time(conn, kind, key, {row["id"] for row in rows})
        start, end = period_bounds(kind, key)
        mobile = queries.mobile_usage_total(date_key(start), date_key(end)).run(conn)

        fields = dict(
            key=key,
            total_sessions=total,
            total_focus_time=focus_time,
            completed_sessions=completed,
            interrupted_sessions=total - completed,
            avg_focus_score=avg_score,
            total_whitelisted_time=whitelisted,
            total_mobile_usage=mobile,
        )

        if kind == DAILY:
            return DailyStats(**fields)

        per_day: Dict[str, int] = defaultdict(int)
        for row in rows:
            per_day[date_key(decode_timestamp(row["start_time"]))] += row["actual_duration"]
        avg_daily = focus_time // days_in_period(kind, key)

        if kind == WEEKLY:
            best_day, best_day_time = max(sorted(per_day.items()), key=lambda kv: kv[1])
            return WeeklyStats(
                avg_daily_focus_time=avg_daily,
                best_day_date=best_day,
                best_day_focus_time=best_day_time,
                active_days=len(per_day),
                **fields,
            )

        per_week: Dict[str, int] = defaultdict(int)
        for day, seconds in per_day.items():
            per_week[week_key(day)] += seconds
        best_week, best_week_time = max(sorted(per_week.items()), key=lambda kv: kv[1])
        weeks_in_month = len({week_key(start + timedelta(days=offset))
                              for offset in range(days_in_period(kind, key))})
        return MonthlyStats(
            avg_daily_focus_time=avg_daily,
            avg_weekly_focus_time=focus_time // weeks_in_month,
            best_week_key=best_week,
            best_week_focus_time=best_week_time,
            active_days=len(per_day),
            **fields,
        )

    def summarize(self, kind: str, key: str) -> Optional[PeriodSummary]:
        """Compute a rollup without caching it. None for an empty period."""
        with self.storage.read_snapshot() as conn:
            return self._compute(conn, kind, key)

    def summary_query(self, kind: str, key: str) -> FunctionQuery:
        """Typed query computing a rollup on demand, usable as a live query."""
        validate_key(kind, key)
        return FunctionQuery(f"summary:{kind}:{key}",
                             lambda conn: self._compute(conn, kind, key))

    # =========================================================================
    # Refresh (compute + upsert)
    # =========================================================================

    def refresh(self, kind: str, key: str,
                should_cancel: Callable[[], bool] = None) -> Optional[PeriodSummary]:
        """Recompute a period and replace its cached row.

        Args:
            kind: "daily", "weekly" or "monthly"
            key: Canonical period key for ``kind``
            should_cancel: Optional callable; when it returns True the scan
                is interrupted and RefreshCancelled is raised with nothing
                written.

        Returns:
            The stored rollup, or None if the period is empty (any stale
            cached row is deleted).

        Raises:
            IntegrityError: If the key is malformed.
            RefreshCancelled: If should_cancel fired during the scan.
        """
        validate_key(kind, key)
        try:
            with self.storage.transaction(should_cancel, self.config.progress_interval) as conn:
                summary = self._compute(conn, kind, key, should_cancel)
                if summary is None:
                    self.storage.delete_stats(conn, kind, key)
                else:
                    self.storage.write_stats(conn, summary)
        except sqlite3.OperationalError as e:
            if should_cancel is not None and should_cancel():
                raise RefreshCancelled(f"Refresh of {kind} {key} superseded") from e
            raise

        if summary is None:
            logger.debug(f"No sessions for {kind} {key}, no rollup cached")
        else:
            logger.debug(f"Refreshed {kind} {key}: {summary.total_sessions} sessions")
        return summary

    def refresh_daily(self, date: str) -> Optional[DailyStats]:
        return self.refresh(DAILY, date)

    def refresh_weekly(self, week_key: str) -> Optional[WeeklyStats]:
        return self.refresh(WEEKLY, week_key)

    def refresh_monthly(self, month_key: str) -> Optional[MonthlyStats]:
        return self.refresh(MONTHLY, month_key)

    def refresh_for_timestamp(self, ts) -> Dict[str, Optional[PeriodSummary]]:
        """Refresh the day, week and month containing ``ts``."""
        ts = to_datetime(ts)
        return {kind: self.refresh(kind, period_key(kind, ts)) for kind in PERIOD_KINDS}

    def rebuild_range(self, start, end) -> int:
        """Recompute every day, week and month touching ``[start, end]``.

        Used after corrections to the session log. Returns the number of
        periods refreshed. Periods whose sessions retention already purged
        lose their rollup, so keep the range inside the session horizon.
        """
        first = to_datetime(start).date()
        last = to_datetime(end).date()
        keys = {DAILY: [], WEEKLY: [], MONTHLY: []}
        day = first
        while day <= last:
            for kind, key in ((DAILY, date_key(day)), (WEEKLY, week_key(day)),
                              (MONTHLY, month_key(day))):
                if key not in keys[kind]:
                    keys[kind].append(key)
            day += timedelta(days=1)

        count = 0
        for kind in PERIOD_KINDS:
            for key in keys[kind]:
                self.refresh(kind, key)
                count += 1
        logger.info(f"Rebuilt {count} rollups between {first} and {last}")
        return count

    # =========================================================================
    # Point queries
    # =========================================================================

    def session_count(self, kind: str, key: str) -> int:
        summary = self.summarize(kind, key)
        return summary.total_sessions if summary else 0

    def total_focus_time(self, kind: str, key: str) -> int:
        summary = self.summarize(kind, key)
        return summary.total_focus_time if summary else 0

    def completed_count(self, kind: str, key: str) -> int:
        summary = self.summarize(kind, key)
        return summary.completed_sessions if summary else 0

    def interrupted_count(self, kind: str, key: str) -> int:
        summary = self.summarize(kind, key)
        return summary.interrupted_sessions if summary else 0

    def average_focus_score(self, kind: str, key: str) -> Optional[float]:
        summary = self.summarize(kind, key)
        return summary.avg_focus_score if summary else None

    def total_whitelisted_time(self, kind: str, key: str) -> int:
        summary = self.summarize(kind, key)
        return summary.total_whitelisted_time if summary else 0

    def completion_rate(self, kind: str, key: str) -> Optional[float]:
        summary = self.summarize(kind, key)
        return summary.completion_rate if summary else None

    def active_days(self, kind: str, key: str) -> int:
        """Distinct dates with at least one finalized session in the period."""
        summary = self.summarize(kind, key)
        if summary is None:
            return 0
        if isinstance(summary, DailyStats):
            return 1
        return summary.active_days
