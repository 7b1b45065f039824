"""Live queries that re-deliver their result when underlying rows change.

A consumer subscribes a typed query (see ``queries``) with a callback. The
query is evaluated immediately and the callback receives the initial
result. While it runs, FocusStorage records the tables the query reads;
that set becomes the subscription's dependencies and is refreshed on
every evaluation.

The registry listens for committed writes. A commit touching any table a
subscription depends on marks it dirty. Dirty subscriptions are kept in a
set, so several commits before the next evaluation collapse into one
re-run against the newest snapshot. A background dispatcher thread drains
the set; embedders can call ``run_pending()`` themselves instead.

Unsubscribing is synchronous: it waits for an in-flight evaluation of that
subscription to finish and afterwards nothing more is evaluated or
delivered for it.

Example:
    >>> registry = LiveQueryRegistry(storage)
    >>> registry.start()
    >>> sub = registry.subscribe(queries.recent_sessions(10), print)
    >>> ...
    >>> sub.unsubscribe()
"""

import itertools
import logging
import threading
from typing import Any, Callable, Dict, FrozenSet, Optional, Set

from .config import LiveConfig
from .storage import FocusStorage

logger = logging.getLogger(__name__)

Callback = Callable[[Any], None]


class Subscription:
    """Handle for one live query.

    Attributes:
        id: Registry-assigned identifier
        query: The typed query being watched
        tables: Tables read by the last evaluation (None before the first)
        last_result: Result delivered most recently
        deliveries: Number of results delivered so far
    """

    def __init__(self, registry: "LiveQueryRegistry", sub_id: int, query, callback: Callback):
        self.id = sub_id
        self.query = query
        self.callback = callback
        self.tables: Optional[FrozenSet[str]] = None
        self.last_result: Any = None
        self.deliveries = 0
        self.active = True
        self._registry = registry
        # Reentrant so a callback may unsubscribe its own subscription
        self._delivery_lock = threading.RLock()

    def depends_on(self, tables: FrozenSet[str]) -> bool:
        # Before the first evaluation finishes every write counts
        return self.tables is None or bool(self.tables & tables)

    def unsubscribe(self) -> None:
        self._registry.unsubscribe(self)

    def __repr__(self) -> str:
        return f"Subscription(id={self.id}, query={self.query.name!r}, active={self.active})"


class LiveQueryRegistry:
    """Dependency-tracked subscriptions over FocusStorage reads.

    Attributes:
        storage: FocusStorage the queries run against
        config: LiveConfig with the dispatcher poll interval
    """

    def __init__(self, storage: FocusStorage, config: Optional[LiveConfig] = None):
        self.storage = storage
        self.config = config or LiveConfig()
        self._subscriptions: Dict[int, Subscription] = {}
        self._dirty: Set[int] = set()
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._wakeup = threading.Event()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self.storage.add_change_listener(self._on_commit)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, query, callback: Callback) -> Subscription:
        """Register a live query and deliver its initial result.

        The initial evaluation runs in the calling thread; later results
        arrive on the dispatcher thread (or whichever thread calls
        ``run_pending``).
        """
        with self._lock:
            sub = Subscription(self, next(self._ids), query, callback)
            self._subscriptions[sub.id] = sub
        logger.debug(f"Subscribed {sub}")
        self._evaluate(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        """Stop a subscription; returns once no delivery can follow."""
        with self._lock:
            self._subscriptions.pop(sub.id, None)
            self._dirty.discard(sub.id)
        with sub._delivery_lock:
            sub.active = False
        logger.debug(f"Unsubscribed {sub}")

    def subscription_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _on_commit(self, tables: FrozenSet[str]) -> None:
        with self._lock:
            for sub in self._subscriptions.values():
                if sub.depends_on(tables):
                    self._dirty.add(sub.id)
            has_work = bool(self._dirty)
        if has_work:
            self._wakeup.set()

    def _evaluate(self, sub: Subscription) -> None:
        with sub._delivery_lock:
            if not sub.active:
                return
            try:
                result, tables = self.storage.run_tracked(sub.query)
            except Exception as e:
                logger.error(f"Live query {sub.query.name} failed: {e}", exc_info=True)
                return
            sub.tables = tables
            sub.last_result = result
            sub.deliveries += 1
            try:
                sub.callback(result)
            except Exception as e:
                logger.error(f"Live query callback for {sub.query.name} failed: {e}", exc_info=True)

    def run_pending(self) -> int:
        """Re-evaluate every dirty subscription once.

        Returns:
            Number of subscriptions evaluated.
        """
        with self._lock:
            ids = sorted(self._dirty)
            self._dirty.clear()
            subs = [self._subscriptions[i] for i in ids if i in self._subscriptions]
        for sub in subs:
            self._evaluate(sub)
        return len(subs)

    # =========================================================================
    # Dispatcher thread
    # =========================================================================

    def start(self):
        """Start the background dispatcher thread."""
        if self._running:
            logger.warning("LiveQueryRegistry already running")
            return

        self._running = True
        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.start()
        logger.info("LiveQueryRegistry dispatcher started")

    def stop(self):
        """Stop the dispatcher thread. Subscriptions stay registered."""
        if not self._running:
            return

        self._running = False
        self._wakeup.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("LiveQueryRegistry dispatcher stopped")

    def close(self):
        """Stop the dispatcher, drop every subscription and detach from storage."""
        self.stop()
        with self._lock:
            subs = list(self._subscriptions.values())
        for sub in subs:
            self.unsubscribe(sub)
        self.storage.remove_change_listener(self._on_commit)

    def get_status(self) -> Dict:
        with self._lock:
            return {
                "running": self._running,
                "subscriptions": len(self._subscriptions),
                "pending": len(self._dirty),
            }

    def _run_loop(self):
        """Background loop delivering results for dirty subscriptions."""
        logger.info("LiveQueryRegistry run loop started")

        while self._running:
            self._wakeup.wait(timeout=self.config.poll_interval)
            self._wakeup.clear()
            if not self._running:
                break
            try:
                self.run_pending()
            except Exception as e:
                logger.error(f"Live query dispatch failed: {e}", exc_info=True)

        logger.info("LiveQueryRegistry run loop stopped")
