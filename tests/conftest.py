"""Shared fixtures: a fresh SQLite store per test and session builders."""

from datetime import datetime, timedelta

import pytest

from focusstats.aggregator import PeriodAggregator
from focusstats.models import DailyStats, MonthlyStats, Session, WeeklyStats
from focusstats.storage import FocusStorage


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "focus.db"


@pytest.fixture
def storage(db_path):
    return FocusStorage(db_path)


@pytest.fixture
def aggregator(storage):
    return PeriodAggregator(storage)


@pytest.fixture
def make_session():
    """Build a finalized session starting at ``start`` lasting ``duration`` seconds."""
    def _make(start, duration, completed=True, score=0.5, **kwargs):
        if isinstance(start, str):
            start = datetime.fromisoformat(start)
        return Session(
            start_time=start,
            end_time=start + timedelta(seconds=duration),
            actual_duration=duration,
            completed=completed,
            focus_score=score,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_stats():
    """Build a minimal rollup row of the given kind for ``key``."""
    def _make(kind, key, total_focus_time=600):
        common = dict(
            key=key,
            total_sessions=1,
            total_focus_time=total_focus_time,
            completed_sessions=1,
            interrupted_sessions=0,
            avg_focus_score=0.5,
            total_whitelisted_time=0,
        )
        if kind == "daily":
            return DailyStats(**common)
        if kind == "weekly":
            return WeeklyStats(**common)
        return MonthlyStats(**common)
    return _make
