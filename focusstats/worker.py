"""Background refresh worker for period rollups.

Refresh requests are keyed by ``(kind, key)``. A request for a key that
is already pending replaces it instead of queuing behind it, and a
request for the key currently being refreshed cancels that scan so the
newer request runs against the latest rows. The backlog is therefore
bounded by the number of distinct periods, never by the number of writes.
"""

import logging
import threading
from typing import Dict, Optional, Tuple

from .aggregator import PeriodAggregator
from .errors import RefreshCancelled
from .periods import PERIOD_KINDS, period_key, to_datetime, validate_key

logger = logging.getLogger(__name__)

PeriodRef = Tuple[str, str]


class AggregationWorker:
    """Background worker draining pending rollup refreshes.

    Attributes:
        aggregator: PeriodAggregator performing the refreshes
    """

    def __init__(self, aggregator: PeriodAggregator, poll_interval: float = 1.0):
        self.aggregator = aggregator
        self.poll_interval = poll_interval
        self._pending: Dict[PeriodRef, None] = {}
        self._lock = threading.Lock()
        self._wakeup = threading.Event()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._current: Optional[PeriodRef] = None
        self._current_cancel: Optional[threading.Event] = None
        self._counts = {"refreshed": 0, "superseded": 0, "failed": 0}

    def request(self, kind: str, key: str) -> None:
        """Schedule a refresh, superseding any older request for the same period."""
        validate_key(kind, key)
        ref = (kind, key)
        with self._lock:
            self._pending[ref] = None
            if self._current == ref and self._current_cancel is not None:
                self._current_cancel.set()
        self._wakeup.set()

    def request_for_timestamp(self, ts) -> None:
        """Schedule the day, week and month containing ``ts``."""
        ts = to_datetime(ts)
        for kind in PERIOD_KINDS:
            self.request(kind, period_key(kind, ts))

    def run_pending(self) -> int:
        """Refresh everything pending in the calling thread.

        Returns:
            Number of refreshes that completed.
        """
        done = 0
        while True:
            with self._lock:
                if not self._pending:
                    return done
                ref = next(iter(self._pending))
                del self._pending[ref]
                cancel = threading.Event()
                self._current = ref
                self._current_cancel = cancel

            kind, key = ref
            try:
                self.aggregator.refresh(kind, key, should_cancel=cancel.is_set)
                self._counts["refreshed"] += 1
                done += 1
            except RefreshCancelled:
                # The newer request for this key is already back in _pending
                self._counts["superseded"] += 1
                logger.warning(f"Refresh of {kind} {key} superseded by a newer request")
            except Exception as e:
                self._counts["failed"] += 1
                logger.error(f"Refresh of {kind} {key} failed: {e}", exc_info=True)
            finally:
                with self._lock:
                    self._current = None
                    self._current_cancel = None

    def start(self):
        """Start the background worker thread."""
        if self._running:
            logger.warning("AggregationWorker already running")
            return

        self._running = True
        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.start()
        logger.info("AggregationWorker started")

    def stop(self):
        """Stop the background worker thread."""
        if not self._running:
            return

        self._running = False
        self._wakeup.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("AggregationWorker stopped")

    def get_status(self) -> Dict:
        """Get current worker status.

        Returns:
            Dict with running state, current refresh, pending count and totals.
        """
        with self._lock:
            current = f"{self._current[0]}:{self._current[1]}" if self._current else None
            return {
                "running": self._running,
                "current_task": current,
                "queue_size": len(self._pending),
                **self._counts,
            }

    def _run_loop(self):
        """Background loop processing pending refreshes."""
        logger.info("AggregationWorker run loop started")

        while self._running:
            self._wakeup.wait(timeout=self.poll_interval)
            self._wakeup.clear()
            if not self._running:
                break
            self.run_pending()

        logger.info("AggregationWorker run loop stopped")
