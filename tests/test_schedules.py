"""Tests for ScheduleRegistry CRUD and structural validation."""

import pytest

from focusstats.errors import IntegrityError, NotFoundError
from focusstats.models import Schedule
from focusstats.schedules import ScheduleRegistry


@pytest.fixture
def schedules(storage):
    return ScheduleRegistry(storage)


def morning(**kwargs):
    fields = dict(name="Morning", start_time="09:00", end_time="11:30", repeat_days=[1, 3, 5])
    fields.update(kwargs)
    return Schedule(**fields)


class TestCrud:

    def test_save_assigns_id_and_round_trips(self, schedules):
        saved = schedules.save(morning(pre_notify_enabled=True, pre_notify_minutes=10))
        assert saved.id is not None
        assert schedules.get(saved.id) == saved

    def test_list_all_and_enabled(self, schedules):
        first = schedules.save(morning())
        second = schedules.save(morning(name="Evening", start_time="19:00",
                                        end_time="21:00", enabled=False))

        assert [s.id for s in schedules.list_all()] == [first.id, second.id]
        assert [s.id for s in schedules.list_enabled()] == [first.id]

    def test_save_with_id_replaces(self, schedules):
        saved = schedules.save(morning())
        saved.name = "Deep work"
        schedules.save(saved)

        assert len(schedules.list_all()) == 1
        assert schedules.get(saved.id).name == "Deep work"

    def test_update(self, schedules):
        saved = schedules.save(morning())
        saved.repeat_days = [6, 7]
        saved.repeat_type = "DAILY"
        schedules.update(saved)

        stored = schedules.get(saved.id)
        assert stored.repeat_days == [6, 7]
        assert stored.repeat_type == "DAILY"

    def test_update_missing(self, schedules):
        with pytest.raises(NotFoundError):
            schedules.update(morning(id=404))
        with pytest.raises(NotFoundError):
            schedules.update(morning())

    def test_set_enabled(self, schedules):
        saved = schedules.save(morning())
        assert schedules.set_enabled(saved.id, False).enabled is False
        assert schedules.list_enabled() == []
        with pytest.raises(NotFoundError):
            schedules.set_enabled(999, True)

    def test_delete(self, schedules):
        first = schedules.save(morning())
        second = schedules.save(morning(name="Evening"))

        assert schedules.delete(first) is True
        assert schedules.delete_by_id(second.id) is True
        assert schedules.delete_by_id(second.id) is False
        assert schedules.list_all() == []


class TestValidation:

    @pytest.mark.parametrize("kwargs", [
        dict(start_time="11:00", end_time="09:00"),
        dict(start_time="25:00"),
        dict(end_time="9:30"),
        dict(repeat_days=[0]),
        dict(repeat_days=[8]),
        dict(repeat_type="HOURLY"),
        dict(pre_notify_minutes=-5),
        dict(name="  "),
    ])
    def test_rejects_malformed(self, schedules, kwargs):
        with pytest.raises(IntegrityError):
            schedules.save(morning(**kwargs))
        assert schedules.list_all() == []

    def test_equal_start_and_end_allowed(self, schedules):
        assert schedules.save(morning(start_time="09:00", end_time="09:00")).id is not None
