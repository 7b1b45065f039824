"""Tests for LiveQueryRegistry delivery, invalidation and unsubscribe."""

import threading

import pytest

from focusstats import queries
from focusstats.config import LiveConfig
from focusstats.live import LiveQueryRegistry
from focusstats.models import Schedule
from focusstats.schedules import ScheduleRegistry


@pytest.fixture
def registry(storage):
    registry = LiveQueryRegistry(storage, LiveConfig(poll_interval=0.05))
    yield registry
    registry.close()


class TestDelivery:

    def test_initial_result_and_dependencies(self, registry):
        results = []
        sub = registry.subscribe(queries.recent_sessions(10), results.append)

        assert results == [[]]
        assert sub.tables == frozenset({"sessions"})

    def test_dependent_write_redelivers(self, storage, registry, make_session):
        results = []
        registry.subscribe(queries.recent_sessions(10), results.append)

        storage.insert_session_with_usage(make_session("2024-01-01T09:00:00", 600))
        assert registry.run_pending() == 1
        assert len(results[-1]) == 1

    def test_unrelated_write_ignored(self, storage, registry):
        results = []
        registry.subscribe(queries.recent_sessions(10), results.append)

        storage.save_daily_mobile_usage("2024-01-01", 60)
        assert registry.run_pending() == 0
        assert len(results) == 1

    def test_invalidations_coalesce(self, storage, registry, make_session):
        results = []
        sub = registry.subscribe(queries.recent_sessions(10), results.append)

        storage.insert_session_with_usage(make_session("2024-01-01T09:00:00", 600))
        storage.insert_session_with_usage(make_session("2024-01-01T10:00:00", 600))
        assert registry.run_pending() == 1
        assert sub.deliveries == 2
        assert len(results[-1]) == 2

    def test_aggregate_query_tracks_tables_it_reads(self, storage, aggregator, registry,
                                                    make_session):
        results = []
        registry.subscribe(aggregator.summary_query("daily", "2024-01-01"), results.append)
        assert results == [None]

        storage.insert_session_with_usage(make_session("2024-01-01T09:00:00", 600))
        registry.run_pending()
        assert results[-1].total_sessions == 1

        storage.save_daily_mobile_usage("2024-01-01", 2400)
        assert registry.run_pending() == 1
        assert results[-1].total_mobile_usage == 2400
        assert results[-1].time_saved_percentage == 25.0

    def test_failing_callback_is_contained(self, storage, registry, make_session):
        good = []

        def broken(result):
            raise RuntimeError("consumer bug")

        registry.subscribe(queries.recent_sessions(10), broken)
        registry.subscribe(queries.recent_sessions(10), good.append)

        storage.insert_session_with_usage(make_session("2024-01-01T09:00:00", 600))
        assert registry.run_pending() == 2
        assert len(good) == 2


class TestUnsubscribe:

    def test_no_delivery_after_unsubscribe(self, storage, registry, make_session):
        results = []
        sub = registry.subscribe(queries.recent_sessions(10), results.append)
        sub.unsubscribe()

        storage.insert_session_with_usage(make_session("2024-01-01T09:00:00", 600))
        assert registry.run_pending() == 0
        assert results == [[]]
        assert registry.subscription_count() == 0
        assert not sub.active

    def test_pending_work_dropped_on_unsubscribe(self, storage, registry):
        results = []
        sub = registry.subscribe(queries.all_schedules(), results.append)

        storage.save_daily_mobile_usage("2024-01-01", 60)
        with storage.transaction() as conn:
            conn.execute(
                "INSERT INTO schedules (name, start_time, end_time) VALUES ('x', '09:00', '10:00')"
            )
        registry.unsubscribe(sub)
        assert registry.run_pending() == 0
        assert len(results) == 1

    def test_unsubscribe_from_callback(self, storage, registry, make_session):
        results = []
        holder = {}

        def once(result):
            results.append(result)
            if "sub" in holder:
                holder["sub"].unsubscribe()

        holder["sub"] = registry.subscribe(queries.recent_sessions(10), once)
        storage.insert_session_with_usage(make_session("2024-01-01T09:00:00", 600))
        registry.run_pending()
        storage.insert_session_with_usage(make_session("2024-01-01T10:00:00", 600))
        registry.run_pending()

        assert len(results) == 2


class TestDispatcher:

    def test_background_delivery(self, storage, registry):
        delivered = threading.Event()
        results = []

        def on_result(result):
            results.append(result)
            if result:
                delivered.set()

        registry.start()
        registry.subscribe(queries.enabled_schedules(), on_result)
        ScheduleRegistry(storage).save(Schedule("Morning", "09:00", "11:00", [1, 2, 3]))

        assert delivered.wait(timeout=5)
        assert results[-1][0].name == "Morning"
        registry.stop()
        assert registry.get_status()["running"] is False
