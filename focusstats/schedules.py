"""Durable store of recurring focus windows.

Schedules are consumed by the external trigger that opens and closes
sessions. This module only persists them; times and repeat days are
checked for structural validity and nothing more.
"""

import logging
from typing import List, Optional

from . import queries
from .errors import IntegrityError, NotFoundError
from .models import Schedule
from .queries import encode_days
from .storage import FocusStorage

logger = logging.getLogger(__name__)


class ScheduleRegistry:
    """CRUD over the schedules table.

    Attributes:
        storage: FocusStorage holding the schedules table
    """

    def __init__(self, storage: FocusStorage):
        self.storage = storage

    @staticmethod
    def _values(schedule: Schedule) -> tuple:
        return (
            schedule.name,
            schedule.start_time,
            schedule.end_time,
            encode_days(schedule.repeat_days),
            schedule.repeat_type,
            int(bool(schedule.enabled)),
            int(bool(schedule.pre_notify_enabled)),
            schedule.pre_notify_minutes,
        )

    def list_all(self) -> List[Schedule]:
        return self.storage.run_query(queries.all_schedules())

    def list_enabled(self) -> List[Schedule]:
        return self.storage.run_query(queries.enabled_schedules())

    def get(self, schedule_id: int) -> Optional[Schedule]:
        return self.storage.run_query(queries.schedule_by_id(schedule_id))

    def save(self, schedule: Schedule) -> Schedule:
        """Insert a schedule, or replace the row with the same id.

        Returns:
            The schedule with ``id`` set.

        Raises:
            IntegrityError: If the schedule is structurally invalid.
        """
        schedule.validate()
        with self.storage.transaction() as conn:
            if schedule.id is None:
                cursor = conn.execute(
                    """
                    INSERT INTO schedules (name, start_time, end_time, repeat_days, repeat_type,
                                           enabled, pre_notify_enabled, pre_notify_minutes)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    self._values(schedule),
                )
                schedule.id = cursor.lastrowid
            else:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO schedules (id, name, start_time, end_time, repeat_days,
                                                      repeat_type, enabled, pre_notify_enabled,
                                                      pre_notify_minutes)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (schedule.id,) + self._values(schedule),
                )
        logger.info(f"Saved schedule {schedule.id} ({schedule.name})")
        return schedule

    def update(self, schedule: Schedule) -> Schedule:
        """Overwrite an existing schedule.

        Raises:
            NotFoundError: If no schedule has ``schedule.id``.
            IntegrityError: If the schedule is structurally invalid.
        """
        if schedule.id is None:
            raise NotFoundError("Cannot update a schedule that has no id")
        schedule.validate()
        with self.storage.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE schedules
                SET name = ?, start_time = ?, end_time = ?, repeat_days = ?, repeat_type = ?,
                    enabled = ?, pre_notify_enabled = ?, pre_notify_minutes = ?
                WHERE id = ?
                """,
                self._values(schedule) + (schedule.id,),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Schedule {schedule.id} not found")
        logger.info(f"Updated schedule {schedule.id} ({schedule.name})")
        return schedule

    def set_enabled(self, schedule_id: int, enabled: bool) -> Schedule:
        with self.storage.transaction() as conn:
            cursor = conn.execute(
                "UPDATE schedules SET enabled = ? WHERE id = ?",
                (int(bool(enabled)), schedule_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Schedule {schedule_id} not found")
            schedule = queries.schedule_by_id(schedule_id).run(conn)
        logger.info(f"Schedule {schedule_id} {'enabled' if enabled else 'disabled'}")
        return schedule

    def delete(self, schedule: Schedule) -> bool:
        if schedule.id is None:
            raise IntegrityError("Cannot delete a schedule that has no id")
        return self.delete_by_id(schedule.id)

    def delete_by_id(self, schedule_id: int) -> bool:
        """Delete a schedule. Returns False if it did not exist."""
        with self.storage.transaction() as conn:
            deleted = conn.execute("DELETE FROM schedules WHERE id = ?", (schedule_id,)).rowcount
        if deleted:
            logger.info(f"Deleted schedule {schedule_id}")
        return deleted > 0
