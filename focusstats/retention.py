"""Retention policies for focus data.

Two independent policies:

1. Cutoff deletion. Sessions that started strictly before a cutoff are
   removed together with their app usage, then rollups whose period key
   sorts before the cutoff's key. Usage rows are deleted before their
   sessions, and a final sweep removes usage rows whose session is gone
   (left behind by an interrupted pass on a store without that ordering).
   Everything runs in one transaction, so a failed pass leaves the data
   as it was and can simply be re-run.

2. FIFO window. ``daily_mobile_usage`` keeps only the N most recent dates
   regardless of age. Re-running when at or under the limit is a no-op.
"""

import logging
import sqlite3
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Optional

from .config import RetentionConfig
from .errors import IntegrityError, RetentionError
from .periods import DAILY, MONTHLY, WEEKLY, date_key, month_key, to_datetime, validate_key, week_key
from .queries import encode_timestamp
from .storage import STATS_TABLES, FocusStorage

logger = logging.getLogger(__name__)


@dataclass
class RetentionReport:
    """Rows removed by one retention pass, per table."""
    app_usage: int = 0
    sessions: int = 0
    orphaned_app_usage: int = 0
    daily_stats: int = 0
    weekly_stats: int = 0
    monthly_stats: int = 0
    daily_mobile_usage: int = 0

    @property
    def total(self) -> int:
        return sum(asdict(self).values())

    def to_dict(self) -> dict:
        return dict(asdict(self), total=self.total)


class RetentionManager:
    """Enforce cutoff deletion and the mobile usage FIFO window.

    Attributes:
        storage: FocusStorage to prune
        config: RetentionConfig with per-table horizons
    """

    def __init__(self, storage: FocusStorage, config: Optional[RetentionConfig] = None):
        self.storage = storage
        self.config = config or RetentionConfig()

    def purge_before(self, cutoff) -> RetentionReport:
        """Delete everything strictly older than ``cutoff``.

        Args:
            cutoff: datetime, date or parseable string. Sessions starting
                before it are deleted; rollups are deleted when their key is
                less than the cutoff's date / week / month key. Rows exactly
                at the cutoff survive.

        Raises:
            RetentionError: If the cascade fails; nothing is deleted then.
        """
        cutoff = to_datetime(cutoff)
        return self._purge(
            session_cutoff=cutoff,
            daily_cutoff=date_key(cutoff),
            weekly_cutoff=week_key(cutoff),
            monthly_cutoff=month_key(cutoff),
        )

    def apply_policy(self, now=None) -> RetentionReport:
        """Run the configured retention horizons and the FIFO window.

        A horizon of 0 days disables deletion for that table.
        """
        now = to_datetime(now) if now is not None else datetime.now()
        cfg = self.config

        def horizon(days: int) -> Optional[datetime]:
            return now - timedelta(days=days) if days > 0 else None

        session_cutoff = horizon(cfg.session_days)
        daily = horizon(cfg.daily_stats_days)
        weekly = horizon(cfg.weekly_stats_days)
        monthly = horizon(cfg.monthly_stats_days)

        report = self._purge(
            session_cutoff=session_cutoff,
            daily_cutoff=date_key(daily) if daily else None,
            weekly_cutoff=week_key(weekly) if weekly else None,
            monthly_cutoff=month_key(monthly) if monthly else None,
        )
        report.daily_mobile_usage = self.enforce_mobile_usage_window()
        return report

    def _purge(self, session_cutoff: Optional[datetime], daily_cutoff: Optional[str],
               weekly_cutoff: Optional[str], monthly_cutoff: Optional[str]) -> RetentionReport:
        report = RetentionReport()
        stats_cutoffs = ((DAILY, daily_cutoff), (WEEKLY, weekly_cutoff), (MONTHLY, monthly_cutoff))
        for kind, key in stats_cutoffs:
            if key is not None:
                validate_key(kind, key)

        try:
            with self.storage.transaction() as conn:
                if session_cutoff is not None:
                    ts = encode_timestamp(session_cutoff)
                    report.app_usage = conn.execute(
                        """
                        DELETE FROM app_usage WHERE session_id IN
                            (SELECT id FROM sessions WHERE start_time < ?)
                        """,
                        (ts,),
                    ).rowcount
                    report.sessions = conn.execute(
                        "DELETE FROM sessions WHERE start_time < ?", (ts,)
                    ).rowcount

                report.orphaned_app_usage = conn.execute(
                    "DELETE FROM app_usage WHERE session_id NOT IN (SELECT id FROM sessions)"
                ).rowcount

                for kind, key in stats_cutoffs:
                    if key is None:
                        continue
                    table, column = STATS_TABLES[kind]
                    deleted = conn.execute(
                        f"DELETE FROM {table} WHERE {column} < ?", (key,)
                    ).rowcount
                    setattr(report, table, deleted)
        except sqlite3.Error as e:
            logger.error(f"Retention pass failed: {e}")
            raise RetentionError(f"Retention pass failed and was rolled back: {e}") from e

        logger.info(
            f"Retention pass removed {report.sessions} sessions, "
            f"{report.app_usage + report.orphaned_app_usage} usage rows, "
            f"{report.daily_stats}/{report.weekly_stats}/{report.monthly_stats} "
            f"daily/weekly/monthly rollups"
        )
        return report

    def enforce_mobile_usage_window(self, window: Optional[int] = None) -> int:
        """Keep only the ``window`` most recent mobile usage dates.

        Returns:
            Number of rows removed (0 when already within the window).

        Raises:
            IntegrityError: If window is smaller than 1.
            RetentionError: If the delete fails.
        """
        window = window if window is not None else self.config.mobile_usage_window
        if window < 1:
            raise IntegrityError(f"Mobile usage window must be at least 1, got {window}")

        try:
            with self.storage.transaction() as conn:
                # Subquery yields NULL with fewer than `window` rows, deleting nothing
                removed = conn.execute(
                    """
                    DELETE FROM daily_mobile_usage WHERE date <
                        (SELECT date FROM daily_mobile_usage ORDER BY date DESC LIMIT 1 OFFSET ?)
                    """,
                    (window - 1,),
                ).rowcount
        except sqlite3.Error as e:
            raise RetentionError(f"Mobile usage FIFO pass failed: {e}") from e

        if removed:
            logger.info(f"Mobile usage window trimmed {removed} dates (keeping {window})")
        return removed
