"""Tests for AggregationWorker supersession and lifecycle."""

import time

import pytest

from focusstats.errors import IntegrityError, RefreshCancelled
from focusstats.worker import AggregationWorker


class SupersedingAggregator:
    """Fake aggregator whose first refresh is superseded while it runs."""

    def __init__(self):
        self.worker = None
        self.calls = []
        self.cancel_seen = None

    def refresh(self, kind, key, should_cancel=None):
        self.calls.append((kind, key))
        if len(self.calls) == 1:
            self.worker.request(kind, key)
            self.cancel_seen = should_cancel()
            raise RefreshCancelled(f"{kind} {key} superseded")
        return None


class FailingAggregator:

    def refresh(self, kind, key, should_cancel=None):
        raise RuntimeError("boom")


class TestRequests:

    def test_duplicate_requests_collapse(self, storage, aggregator, make_session):
        storage.insert_session_with_usage(make_session("2024-01-01T09:00:00", 600))
        worker = AggregationWorker(aggregator)

        worker.request("daily", "2024-01-01")
        worker.request("daily", "2024-01-01")
        assert worker.get_status()["queue_size"] == 1

        assert worker.run_pending() == 1
        assert storage.get_daily_stats("2024-01-01").total_focus_time == 600

    def test_request_for_timestamp(self, aggregator):
        worker = AggregationWorker(aggregator)
        worker.request_for_timestamp("2024-01-01T09:00:00")
        assert worker.get_status()["queue_size"] == 3

    def test_in_flight_refresh_superseded(self):
        fake = SupersedingAggregator()
        worker = AggregationWorker(fake)
        fake.worker = worker

        worker.request("daily", "2024-01-01")
        assert worker.run_pending() == 1

        assert fake.cancel_seen is True
        assert fake.calls == [("daily", "2024-01-01"), ("daily", "2024-01-01")]
        status = worker.get_status()
        assert status["superseded"] == 1
        assert status["refreshed"] == 1
        assert status["queue_size"] == 0

    def test_failure_logged_and_counted(self):
        worker = AggregationWorker(FailingAggregator())
        worker.request("weekly", "2024-W01")
        assert worker.run_pending() == 0
        assert worker.get_status()["failed"] == 1


class TestLifecycle:

    def test_background_thread(self, storage, aggregator, make_session):
        storage.insert_session_with_usage(make_session("2024-01-01T09:00:00", 600))
        worker = AggregationWorker(aggregator, poll_interval=0.05)
        worker.start()
        try:
            worker.request("monthly", "2024-01")
            deadline = time.time() + 5
            while storage.get_monthly_stats("2024-01") is None and time.time() < deadline:
                time.sleep(0.05)
            assert storage.get_monthly_stats("2024-01") is not None
        finally:
            worker.stop()
        assert worker.get_status()["running"] is False

    def test_malformed_request_rejected(self, aggregator):
        worker = AggregationWorker(aggregator)
        with pytest.raises(IntegrityError):
            worker.request("weekly", "2024-01")
