"""Previous-period lookups for trend display.

Resolves "yesterday", "last week" and "last month" relative to a given
day and returns the cached rollup stored for that key. Nothing is
recomputed here: a period that was never aggregated (or has no sessions)
comes back as None, and callers that need a fresh number run the
aggregator first.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from .models import DailyStats, MonthlyStats, PeriodSummary, WeeklyStats
from .periods import (
    DAILY,
    MONTHLY,
    WEEKLY,
    TimeLike,
    period_key,
    previous_key,
    to_datetime,
)
from .storage import FocusStorage

logger = logging.getLogger(__name__)


@dataclass
class Comparison:
    """Current period next to the one before it.

    ``focus_time_delta`` and ``percent_change`` are None unless both rows
    exist; ``percent_change`` is also None when the previous total is 0.
    """
    kind: str
    current_key: str
    previous_key: str
    current: Optional[PeriodSummary]
    previous: Optional[PeriodSummary]
    focus_time_delta: Optional[int]
    percent_change: Optional[float]


class ComparisonQuery:
    """Cached-row lookups for the period preceding ``today``."""

    def __init__(self, storage: FocusStorage):
        self.storage = storage

    @staticmethod
    def _today(today: Optional[TimeLike]) -> date:
        return to_datetime(today).date() if today is not None else date.today()

    def yesterday_key(self, today: Optional[TimeLike] = None) -> str:
        return previous_key(DAILY, period_key(DAILY, self._today(today)))

    def last_week_key(self, today: Optional[TimeLike] = None) -> str:
        return previous_key(WEEKLY, period_key(WEEKLY, self._today(today)))

    def last_month_key(self, today: Optional[TimeLike] = None) -> str:
        return previous_key(MONTHLY, period_key(MONTHLY, self._today(today)))

    def yesterday(self, today: Optional[TimeLike] = None) -> Optional[DailyStats]:
        return self.storage.get_daily_stats(self.yesterday_key(today))

    def last_week(self, today: Optional[TimeLike] = None) -> Optional[WeeklyStats]:
        return self.storage.get_weekly_stats(self.last_week_key(today))

    def last_month(self, today: Optional[TimeLike] = None) -> Optional[MonthlyStats]:
        return self.storage.get_monthly_stats(self.last_month_key(today))

    def compare(self, kind: str, today: Optional[TimeLike] = None) -> Comparison:
        """Cached rollup of the current period against the previous one."""
        current_key = period_key(kind, self._today(today))
        prev_key = previous_key(kind, current_key)
        current = self.storage.get_stats(kind, current_key)
        previous = self.storage.get_stats(kind, prev_key)

        delta = None
        percent = None
        if current is not None and previous is not None:
            delta = current.total_focus_time - previous.total_focus_time
            if previous.total_focus_time > 0:
                percent = round(delta / previous.total_focus_time * 100, 1)

        logger.debug(f"Compared {kind} {current_key} against {prev_key}: delta={delta}")
        return Comparison(
            kind=kind,
            current_key=current_key,
            previous_key=prev_key,
            current=current,
            previous=previous,
            focus_time_delta=delta,
            percent_change=percent,
        )
