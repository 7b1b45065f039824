"""Wiring of the focus analytics components.

FocusService builds every component on one FocusStorage and offers the
write-in operations used by the usage sampler and the trigger mechanism,
keeping rollups fresh after each write.
"""

import logging
from typing import Iterable, Optional

from .aggregator import PeriodAggregator
from .comparison import ComparisonQuery
from .config import Config
from .live import LiveQueryRegistry
from .models import AppUsage, DailyMobileUsage, Session
from .periods import PERIOD_KINDS, period_key, to_datetime
from .retention import RetentionManager, RetentionReport
from .schedules import ScheduleRegistry
from .storage import FocusStorage
from .worker import AggregationWorker

logger = logging.getLogger(__name__)

REFRESH_MODES = ("sync", "background")


class FocusService:
    """Facade over storage, aggregation, retention, comparison, live queries and schedules.

    Attributes:
        config: Config the components were built from
        storage: Shared FocusStorage
        aggregator: PeriodAggregator
        retention: RetentionManager
        comparison: ComparisonQuery
        live: LiveQueryRegistry
        schedules: ScheduleRegistry
        worker: AggregationWorker used when refresh_mode is "background"
    """

    def __init__(self, config: Optional[Config] = None, db_path: Optional[str] = None):
        self.config = config or Config()
        if self.config.aggregation.refresh_mode not in REFRESH_MODES:
            raise ValueError(
                f"aggregation.refresh_mode must be one of {REFRESH_MODES}, "
                f"got {self.config.aggregation.refresh_mode!r}"
            )

        if db_path is None:
            db_file = self.config.storage.db_path
            try:
                db_file.parent.mkdir(parents=True, exist_ok=True)
            except PermissionError as e:
                raise RuntimeError(f"Permission denied creating data directory {db_file.parent}: {e}") from e
            db_path = str(db_file)

        self.storage = FocusStorage(db_path)
        self.aggregator = PeriodAggregator(self.storage, self.config.aggregation)
        self.retention = RetentionManager(self.storage, self.config.retention)
        self.comparison = ComparisonQuery(self.storage)
        self.live = LiveQueryRegistry(self.storage, self.config.live)
        self.schedules = ScheduleRegistry(self.storage)
        self.worker = AggregationWorker(self.aggregator)

    @property
    def background(self) -> bool:
        return self.config.aggregation.refresh_mode == "background"

    def _refresh(self, kind: str, key: str) -> None:
        if self.background:
            self.worker.request(kind, key)
        else:
            self.aggregator.refresh(kind, key)

    def _refresh_periods_of(self, ts) -> None:
        ts = to_datetime(ts)
        for kind in PERIOD_KINDS:
            self._refresh(kind, period_key(kind, ts))

    # =========================================================================
    # Write-in
    # =========================================================================

    def record_session(self, session: Session, usage: Iterable[AppUsage] = ()) -> Session:
        """Store a session with its usage and refresh the periods it falls in.

        Open sessions are stored but do not trigger a refresh, since
        rollups only count finalized sessions.
        """
        session = self.storage.insert_session_with_usage(session, usage)
        if not session.is_open:
            self._refresh_periods_of(session.start_time)
        return session

    def open_session(self, start_time, target_duration: int = 0,
                     source: str = "manual") -> Session:
        return self.storage.open_session(start_time, target_duration, source)

    def finalize_session(self, session_id: int, end_time, actual_duration: int,
                         completed: bool, focus_score: float,
                         usage: Iterable[AppUsage] = ()) -> Session:
        session = self.storage.finalize_session(
            session_id, end_time, actual_duration, completed, focus_score, usage
        )
        self._refresh_periods_of(session.start_time)
        return session

    def record_mobile_usage(self, date: str, total_mobile_usage: int) -> DailyMobileUsage:
        """Save a daily device usage sample, apply the FIFO window and refresh
        the day, week and month the sample belongs to.
        """
        sample = self.storage.save_daily_mobile_usage(date, total_mobile_usage)
        self.retention.enforce_mobile_usage_window()
        self._refresh_periods_of(date)
        return sample

    def run_retention(self, now=None) -> RetentionReport:
        return self.retention.apply_policy(now)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self):
        """Start the live dispatcher and, in background mode, the refresh worker."""
        if self.background:
            self.worker.start()
        self.live.start()
        logger.info(f"FocusService started on {self.storage.db_path} "
                    f"(refresh mode: {self.config.aggregation.refresh_mode})")

    def stop(self):
        self.live.stop()
        self.worker.stop()
        # Drain refreshes requested after the worker's last pass
        if self.background:
            self.worker.run_pending()
        logger.info("FocusService stopped")

    def get_status(self) -> dict:
        return {
            "db_path": self.storage.db_path,
            "refresh_mode": self.config.aggregation.refresh_mode,
            "worker": self.worker.get_status(),
            "live": self.live.get_status(),
        }
