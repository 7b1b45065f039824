"""Tests for PeriodAggregator rollups, caching and cancellation."""

from datetime import datetime

import pytest

from focusstats.errors import IntegrityError, RefreshCancelled
from focusstats.models import AppUsage, DailyStats, MonthlyStats, WeeklyStats


@pytest.fixture
def two_sessions(storage, make_session):
    """Session A (1500s, completed, 0.8) and B (600s, interrupted, 0.4) on 2024-01-01."""
    a = storage.insert_session_with_usage(
        make_session("2024-01-01T09:00:00", 1500, completed=True, score=0.8),
        [AppUsage("com.spotify.music", 120, is_whitelisted=True),
         AppUsage("com.android.chrome", 300)],
    )
    b = storage.insert_session_with_usage(
        make_session("2024-01-01T14:00:00", 600, completed=False, score=0.4),
        [AppUsage("com.google.maps", 30, is_whitelisted=True)],
    )
    return a, b


class TestPointQueries:

    def test_example_day(self, aggregator, two_sessions):
        assert aggregator.session_count("daily", "2024-01-01") == 2
        assert aggregator.total_focus_time("daily", "2024-01-01") == 2100
        assert aggregator.completed_count("daily", "2024-01-01") == 1
        assert aggregator.interrupted_count("daily", "2024-01-01") == 1
        assert aggregator.average_focus_score("daily", "2024-01-01") == 0.6
        assert aggregator.completion_rate("daily", "2024-01-01") == 50.0
        assert aggregator.total_whitelisted_time("daily", "2024-01-01") == 150

    def test_empty_period_is_absent(self, aggregator):
        assert aggregator.summarize("daily", "2024-01-01") is None
        assert aggregator.average_focus_score("daily", "2024-01-01") is None
        assert aggregator.completion_rate("daily", "2024-01-01") is None
        assert aggregator.session_count("daily", "2024-01-01") == 0

    def test_open_sessions_not_counted(self, storage, aggregator, two_sessions):
        storage.open_session(datetime(2024, 1, 1, 18, 0))
        assert aggregator.session_count("daily", "2024-01-01") == 2

    def test_malformed_key(self, aggregator):
        with pytest.raises(IntegrityError):
            aggregator.summarize("weekly", "2024-01")
        with pytest.raises(IntegrityError):
            aggregator.refresh("daily", "2024-1-1")


class TestRefresh:

    def test_refresh_persists_row(self, storage, aggregator, two_sessions):
        stats = aggregator.refresh_daily("2024-01-01")

        assert isinstance(stats, DailyStats)
        assert storage.get_daily_stats("2024-01-01") == stats
        assert stats.total_sessions == 2
        assert stats.avg_focus_score == 0.6

    def test_refresh_is_idempotent(self, storage, aggregator, two_sessions):
        aggregator.refresh_daily("2024-01-01")
        with storage.read_snapshot() as conn:
            first = [tuple(r) for r in conn.execute("SELECT * FROM daily_stats")]

        aggregator.refresh_daily("2024-01-01")
        with storage.read_snapshot() as conn:
            second = [tuple(r) for r in conn.execute("SELECT * FROM daily_stats")]

        assert first == second
        assert len(second) == 1

    def test_new_data_replaces_row(self, storage, aggregator, two_sessions, make_session):
        aggregator.refresh_daily("2024-01-01")
        storage.insert_session_with_usage(make_session("2024-01-01T20:00:00", 900, score=0.9))
        stats = aggregator.refresh_daily("2024-01-01")

        assert stats.total_sessions == 3
        assert storage.get_daily_stats("2024-01-01").total_focus_time == 3000

    def test_empty_period_gets_no_row(self, storage, aggregator):
        assert aggregator.refresh_daily("2024-01-01") is None
        assert storage.get_daily_stats("2024-01-01") is None

    def test_stale_row_removed_when_period_empties(self, storage, aggregator, make_stats):
        storage.save_stats(make_stats("daily", "2024-01-01"))
        assert aggregator.refresh_daily("2024-01-01") is None
        assert storage.get_daily_stats("2024-01-01") is None

    def test_mobile_usage_joined_into_daily(self, storage, aggregator, two_sessions):
        storage.save_daily_mobile_usage("2024-01-01", 8400)
        stats = aggregator.refresh_daily("2024-01-01")

        assert stats.total_mobile_usage == 8400
        assert stats.time_saved_percentage == 25.0

    def test_refresh_for_timestamp(self, aggregator, two_sessions):
        result = aggregator.refresh_for_timestamp(datetime(2024, 1, 1, 12, 0))
        assert set(result) == {"daily", "weekly", "monthly"}
        assert result["weekly"].key == "2024-W01"
        assert result["monthly"].key == "2024-01"

    def test_rebuild_range(self, storage, aggregator, two_sessions):
        count = aggregator.rebuild_range("2024-01-01", "2024-01-02")
        # two days, one week, one month
        assert count == 4
        assert storage.get_daily_stats("2024-01-01") is not None
        assert storage.get_daily_stats("2024-01-02") is None


class TestWeeklyMonthly:

    def test_weekly_extras(self, storage, aggregator, two_sessions, make_session):
        storage.insert_session_with_usage(make_session("2024-01-03T10:00:00", 900))
        stats = aggregator.refresh_weekly("2024-W01")

        assert isinstance(stats, WeeklyStats)
        assert stats.total_focus_time == 3000
        assert stats.avg_daily_focus_time == 3000 // 7
        assert stats.best_day_date == "2024-01-01"
        assert stats.best_day_focus_time == 2100
        assert stats.active_days == 2
        assert storage.get_weekly_stats("2024-W01") == stats

    def test_monthly_extras(self, storage, aggregator, two_sessions, make_session):
        storage.insert_session_with_usage(make_session("2024-01-10T10:00:00", 2400))
        stats = aggregator.refresh_monthly("2024-01")

        assert isinstance(stats, MonthlyStats)
        assert stats.avg_daily_focus_time == 4500 // 31
        assert stats.best_week_key == "2024-W02"
        assert stats.best_week_focus_time == 2400
        assert stats.active_days == 2
        assert aggregator.active_days("monthly", "2024-01") == 2

    def test_mobile_usage_summed_over_period(self, storage, aggregator, two_sessions):
        for day, seconds in (("2023-12-31", 9000), ("2024-01-01", 3000),
                             ("2024-01-07", 1000), ("2024-01-08", 500)):
            storage.save_daily_mobile_usage(day, seconds)

        weekly = aggregator.refresh_weekly("2024-W01")
        monthly = aggregator.refresh_monthly("2024-01")

        assert weekly.total_mobile_usage == 4000
        assert weekly.time_saved_percentage == 52.5
        assert monthly.total_mobile_usage == 4500
        assert storage.get_weekly_stats("2024-W01").total_mobile_usage == 4000
        assert storage.get_monthly_stats("2024-01").total_mobile_usage == 4500

    def test_no_mobile_usage(self, aggregator, two_sessions):
        weekly = aggregator.refresh_weekly("2024-W01")
        assert weekly.total_mobile_usage == 0
        assert weekly.time_saved_percentage is None

    def test_avg_weekly_focus_time(self, storage, aggregator, two_sessions, make_session):
        storage.insert_session_with_usage(make_session("2024-01-10T10:00:00", 2400))
        stats = aggregator.refresh_monthly("2024-01")

        # January 2024 overlaps ISO weeks 1 to 5
        assert stats.avg_weekly_focus_time == 4500 // 5
        assert storage.get_monthly_stats("2024-01").avg_weekly_focus_time == 900

    def test_avg_weekly_counts_weeks_across_year_end(self, storage, aggregator, make_session):
        storage.insert_session_with_usage(make_session("2024-12-30T09:00:00", 600))
        # 2024-W48 to 2024-W52 plus 2025-W01
        assert aggregator.refresh_monthly("2024-12").avg_weekly_focus_time == 100

    def test_year_boundary_bucketing(self, storage, aggregator, make_session):
        storage.insert_session_with_usage(make_session("2024-12-30T09:00:00", 600))

        assert aggregator.session_count("weekly", "2025-W01") == 1
        assert aggregator.session_count("weekly", "2024-W52") == 0
        assert aggregator.session_count("monthly", "2024-12") == 1
        assert aggregator.session_count("monthly", "2025-01") == 0


class TestCancellation:

    def test_cancelled_refresh_writes_nothing(self, storage, aggregator, two_sessions):
        with pytest.raises(RefreshCancelled):
            aggregator.refresh("daily", "2024-01-01", should_cancel=lambda: True)
        assert storage.get_daily_stats("2024-01-01") is None

    def test_cancelled_refresh_keeps_existing_row(self, storage, aggregator, make_stats):
        storage.save_stats(make_stats("daily", "2024-01-01"))
        with pytest.raises(RefreshCancelled):
            aggregator.refresh("daily", "2024-01-01", should_cancel=lambda: True)
        assert storage.get_daily_stats("2024-01-01") is not None

    def test_summary_query_runs_on_demand(self, storage, aggregator, two_sessions):
        summary = storage.run_query(aggregator.summary_query("daily", "2024-01-01"))
        assert summary.total_focus_time == 2100
        assert storage.get_daily_stats("2024-01-01") is None
