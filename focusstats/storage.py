"""SQLite Database Storage Module for focusstats.

This module is the durable event store behind the focus analytics engine.
It owns the SQLite schema, hands out short-lived connections, wraps
multi-table writes in scoped transactions and tells interested parties
which tables every committed transaction touched.

The database schema stores:
- sessions: focus sessions (open until finalized exactly once)
- app_usage: per-app foreground time, owned by one session
- daily_stats / weekly_stats / monthly_stats: derived rollups keyed by period
- daily_mobile_usage: raw device usage per date (FIFO retained)
- schedules: recurring focus window definitions

Key Features:
- Context managers for connections, write transactions and read snapshots
- One writer at a time per database file (in-process lock + BEGIN IMMEDIATE)
- WAL journal so readers always see a committed snapshot
- Table-level change notification discovered with an SQLite authorizer,
  so writers never need to know who is listening

Example:
    >>> storage = FocusStorage("/tmp/focus.db")
    >>> session = storage.insert_session_with_usage(
    ...     Session(start_time=start, end_time=end, actual_duration=1500,
    ...             completed=True, focus_score=0.8),
    ...     [AppUsage("com.spotify.music", 120, is_whitelisted=True)],
    ... )
    >>> storage.get_app_usage_for_session(session.id)
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from . import queries
from .errors import IntegrityError, NotFoundError
from .models import (
    AppUsage,
    DailyMobileUsage,
    DailyStats,
    MonthlyStats,
    PeriodSummary,
    Session,
    WeeklyStats,
)
from .periods import DAILY, MONTHLY, WEEKLY, parse_date_key, to_datetime, validate_key
from .queries import encode_timestamp

logger = logging.getLogger(__name__)

TABLES = frozenset({
    "sessions",
    "app_usage",
    "daily_stats",
    "weekly_stats",
    "monthly_stats",
    "daily_mobile_usage",
    "schedules",
})

# period kind -> (table, key column)
STATS_TABLES = {
    DAILY: ("daily_stats", "date"),
    WEEKLY: ("weekly_stats", "week_key"),
    MONTHLY: ("monthly_stats", "month_key"),
}

ChangeListener = Callable[[FrozenSet[str]], None]

_WRITE_ACTIONS = (sqlite3.SQLITE_INSERT, sqlite3.SQLITE_UPDATE, sqlite3.SQLITE_DELETE)

# One writer lock per database file, shared by every FocusStorage on it
_write_locks: Dict[str, threading.RLock] = {}
_write_locks_guard = threading.Lock()


def _write_lock_for(db_path: str) -> threading.RLock:
    with _write_locks_guard:
        lock = _write_locks.get(db_path)
        if lock is None:
            lock = threading.RLock()
            _write_locks[db_path] = lock
        return lock


def _table_tracker(reads: Optional[Set[str]], writes: Optional[Set[str]]):
    """Build an authorizer that records which known tables are read/written."""
    def authorizer(action, arg1, arg2, db_name, trigger):
        if arg1 in TABLES:
            if action == sqlite3.SQLITE_READ and reads is not None:
                reads.add(arg1)
            elif action in _WRITE_ACTIONS and writes is not None:
                writes.add(arg1)
        return sqlite3.SQLITE_OK
    return authorizer


class FocusStorage:
    """SQLite interface for focus sessions, usage, rollups and schedules.

    Attributes:
        db_path (str): Absolute path to the SQLite database file
    """

    def __init__(self, db_path: str = None):
        """Initialize FocusStorage and make sure the schema exists.

        Args:
            db_path (str, optional): Path to SQLite database file. If None,
                uses ~/focusstats-data/focus.db

        Raises:
            RuntimeError: If the data directory cannot be created or the
                database cannot be opened
        """
        if db_path is None:
            data_dir = Path.home() / "focusstats-data"
            try:
                data_dir.mkdir(exist_ok=True)
            except PermissionError as e:
                raise RuntimeError(f"Permission denied creating data directory {data_dir}: {e}") from e
            db_path = data_dir / "focus.db"

        self.db_path = str(db_path)
        self._write_lock = _write_lock_for(self.db_path)
        self._listeners: List[ChangeListener] = []
        self._listeners_lock = threading.Lock()
        self.init_db()

    # =========================================================================
    # Connections and transactions
    # =========================================================================

    @contextmanager
    def get_connection(self):
        """Context manager for SQLite database connections.

        Connections run in autocommit mode; transactions are opened
        explicitly by transaction() and read_snapshot().

        Yields:
            sqlite3.Connection: Database connection with Row factory enabled

        Raises:
            RuntimeError: If the database file cannot be opened
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None,
                                   check_same_thread=False)
        except (sqlite3.OperationalError, PermissionError) as e:
            raise RuntimeError(f"Database access error for {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self, should_cancel: Callable[[], bool] = None,
                    progress_interval: int = 1000):
        """Scoped write transaction.

        Holds the writer lock, opens ``BEGIN IMMEDIATE``, commits when the
        block exits normally and rolls back on any exception. After a
        successful commit every change listener receives the set of tables
        the transaction wrote.

        Args:
            should_cancel: Optional callable polled every ``progress_interval``
                SQLite VM steps; returning True interrupts the running
                statement (sqlite3.OperationalError) and the transaction
                rolls back.
            progress_interval: VM steps between should_cancel polls.

        Yields:
            sqlite3.Connection inside an open transaction
        """
        written: Set[str] = set()
        with self._write_lock:
            with self.get_connection() as conn:
                conn.set_authorizer(_table_tracker(None, written))
                if should_cancel is not None:
                    conn.set_progress_handler(lambda: 1 if should_cancel() else 0,
                                              progress_interval)
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                    conn.execute("COMMIT")
                except BaseException:
                    conn.set_progress_handler(None, 0)
                    # An interrupted write may already have been rolled back by SQLite
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
        if written:
            self._notify(frozenset(written))

    @contextmanager
    def read_snapshot(self, tables_read: Optional[Set[str]] = None):
        """Read transaction giving all SELECTs in the block one snapshot.

        Args:
            tables_read: Optional set that receives the name of every table
                read inside the block.
        """
        with self.get_connection() as conn:
            if tables_read is not None:
                conn.set_authorizer(_table_tracker(tables_read, None))
            conn.execute("BEGIN")
            try:
                yield conn
            finally:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")

    def run_query(self, query):
        """Run a typed query against a fresh snapshot."""
        with self.read_snapshot() as conn:
            return query.run(conn)

    def run_tracked(self, query) -> Tuple[object, FrozenSet[str]]:
        """Run a typed query and report the tables it read."""
        tables: Set[str] = set()
        with self.read_snapshot(tables) as conn:
            result = query.run(conn)
        return result, frozenset(tables)

    # =========================================================================
    # Change notification
    # =========================================================================

    def add_change_listener(self, listener: ChangeListener) -> None:
        with self._listeners_lock:
            self._listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self, tables: FrozenSet[str]) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        logger.debug(f"Committed write to {sorted(tables)}, notifying {len(listeners)} listeners")
        for listener in listeners:
            try:
                listener(tables)
            except Exception as e:
                logger.error(f"Change listener failed: {e}", exc_info=True)

    # =========================================================================
    # Schema
    # =========================================================================

    def init_db(self):
        """Create tables and indexes if they don't exist."""
        with self.get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    start_time TEXT NOT NULL,
                    end_time TEXT,
                    target_duration INTEGER NOT NULL DEFAULT 0,
                    actual_duration INTEGER NOT NULL DEFAULT 0,
                    completed INTEGER NOT NULL DEFAULT 0,
                    focus_score REAL NOT NULL DEFAULT 0,
                    source TEXT NOT NULL DEFAULT 'manual',
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_sessions_start ON sessions(start_time)
            """)

            # No ON DELETE CASCADE: retention removes usage rows explicitly
            conn.execute("""
                CREATE TABLE IF NOT EXISTS app_usage (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id INTEGER NOT NULL REFERENCES sessions(id),
                    package_name TEXT NOT NULL,
                    app_name TEXT,
                    usage_time INTEGER NOT NULL,
                    is_whitelisted INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_app_usage_session ON app_usage(session_id)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS daily_stats (
                    date TEXT PRIMARY KEY,
                    total_sessions INTEGER NOT NULL,
                    total_focus_time INTEGER NOT NULL,
                    completed_sessions INTEGER NOT NULL,
                    interrupted_sessions INTEGER NOT NULL,
                    avg_focus_score REAL,
                    total_whitelisted_time INTEGER NOT NULL,
                    total_mobile_usage INTEGER NOT NULL DEFAULT 0
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS weekly_stats (
                    week_key TEXT PRIMARY KEY,
                    total_sessions INTEGER NOT NULL,
                    total_focus_time INTEGER NOT NULL,
                    completed_sessions INTEGER NOT NULL,
                    interrupted_sessions INTEGER NOT NULL,
                    avg_focus_score REAL,
                    total_whitelisted_time INTEGER NOT NULL,
                    completion_rate REAL,
                    total_mobile_usage INTEGER NOT NULL DEFAULT 0,
                    avg_daily_focus_time INTEGER NOT NULL DEFAULT 0,
                    best_day_date TEXT,
                    best_day_focus_time INTEGER NOT NULL DEFAULT 0,
                    active_days INTEGER NOT NULL DEFAULT 0
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS monthly_stats (
                    month_key TEXT PRIMARY KEY,
                    total_sessions INTEGER NOT NULL,
                    total_focus_time INTEGER NOT NULL,
                    completed_sessions INTEGER NOT NULL,
                    interrupted_sessions INTEGER NOT NULL,
                    avg_focus_score REAL,
                    total_whitelisted_time INTEGER NOT NULL,
                    completion_rate REAL,
                    total_mobile_usage INTEGER NOT NULL DEFAULT 0,
                    avg_daily_focus_time INTEGER NOT NULL DEFAULT 0,
                    avg_weekly_focus_time INTEGER NOT NULL DEFAULT 0,
                    best_week_key TEXT,
                    best_week_focus_time INTEGER NOT NULL DEFAULT 0,
                    active_days INTEGER NOT NULL DEFAULT 0
                )
            """)

            # Rollup columns added after the first schema (migration)
            for table, column in (("weekly_stats", "total_mobile_usage"),
                                  ("monthly_stats", "total_mobile_usage"),
                                  ("monthly_stats", "avg_weekly_focus_time")):
                cursor = conn.execute(f"PRAGMA table_info({table})")
                if column not in {row[1] for row in cursor.fetchall()}:
                    conn.execute(
                        f"ALTER TABLE {table} ADD COLUMN {column} INTEGER NOT NULL DEFAULT 0"
                    )
                    logger.info(f"Added '{column}' column to {table} table")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS daily_mobile_usage (
                    date TEXT PRIMARY KEY,
                    total_mobile_usage INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS schedules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    repeat_days TEXT NOT NULL DEFAULT '',
                    repeat_type TEXT NOT NULL DEFAULT 'WEEKLY',
                    enabled INTEGER NOT NULL DEFAULT 1,
                    pre_notify_enabled INTEGER NOT NULL DEFAULT 0,
                    pre_notify_minutes INTEGER NOT NULL DEFAULT 0
                )
            """)

    # =========================================================================
    # Session Write Methods
    # =========================================================================

    def insert_session_with_usage(self, session: Session,
                                  usage_rows: Iterable[AppUsage] = ()) -> Session:
        """Atomically persist a session and the app usage recorded in it.

        The session gets a generated id which is stamped onto every usage
        row. Either the session and all of its usage rows become visible
        together or nothing is written.

        Args:
            session: Session to store; ``id`` must be None.
            usage_rows: AppUsage rows with ``session_id`` left as None.

        Returns:
            The session with ``id`` and ``created_at`` filled in. The given
            usage rows are updated in place with their ids once committed.

        Raises:
            IntegrityError: If the session already has an id, a usage row
                names a session id of its own, or timing fields are invalid.
        """
        usage_rows = list(usage_rows or ())
        if session.id is not None:
            raise IntegrityError(f"Session already has id {session.id}; ids are generated on insert")
        session.start_time = to_datetime(session.start_time)
        if session.end_time is not None:
            session.end_time = to_datetime(session.end_time)
        session.validate()
        self._validate_usage(usage_rows)

        now = datetime.now()
        with self.transaction() as conn:
            session_id = self._insert_session_row(conn, session, now)
            usage_ids = self._insert_usage_rows(conn, session_id, usage_rows, now)

        for usage, usage_id in zip(usage_rows, usage_ids):
            usage.id = usage_id
            usage.session_id = session_id
            usage.created_at = now
        session.id = session_id
        session.created_at = now
        logger.debug(f"Inserted session {session_id} with {len(usage_rows)} usage rows")
        return session

    def open_session(self, start_time, target_duration: int = 0,
                     source: str = "manual") -> Session:
        """Create an open session at focus-window start.

        Returns:
            The stored Session (end_time None).
        """
        return self.insert_session_with_usage(Session(
            start_time=to_datetime(start_time),
            target_duration=target_duration,
            source=source,
        ))

    def finalize_session(self, session_id: int, end_time, actual_duration: int,
                         completed: bool, focus_score: float,
                         usage_rows: Iterable[AppUsage] = ()) -> Session:
        """Close an open session; the only mutation a session ever sees.

        Usage rows passed here are written in the same transaction.

        Raises:
            NotFoundError: If no session has this id.
            IntegrityError: If the session is already finalized or the new
                values are inconsistent.
        """
        usage_rows = list(usage_rows or ())
        self._validate_usage(usage_rows)
        end_time = to_datetime(end_time)
        now = datetime.now()

        with self.transaction() as conn:
            session = queries.session_by_id(session_id).run(conn)
            if session is None:
                raise NotFoundError(f"Session {session_id} not found")
            if not session.is_open:
                raise IntegrityError(f"Session {session_id} is already finalized")

            session = replace(
                session,
                end_time=end_time,
                actual_duration=actual_duration,
                completed=bool(completed),
                focus_score=focus_score,
            )
            session.validate()

            conn.execute(
                """
                UPDATE sessions
                SET end_time = ?, actual_duration = ?, completed = ?, focus_score = ?
                WHERE id = ?
                """,
                (encode_timestamp(end_time), actual_duration, int(bool(completed)),
                 focus_score, session_id),
            )
            usage_ids = self._insert_usage_rows(conn, session_id, usage_rows, now)

        for usage, usage_id in zip(usage_rows, usage_ids):
            usage.id = usage_id
            usage.session_id = session_id
            usage.created_at = now
        logger.debug(f"Finalized session {session_id} (completed={completed})")
        return session

    @staticmethod
    def _validate_usage(usage_rows: List[AppUsage]) -> None:
        for usage in usage_rows:
            if usage.session_id is not None:
                raise IntegrityError(
                    f"Usage row for {usage.package_name} already references session "
                    f"{usage.session_id}; session ids are assigned by the store"
                )
            if usage.usage_time < 0:
                raise IntegrityError(f"Negative usage time for {usage.package_name}")

    @staticmethod
    def _insert_session_row(conn: sqlite3.Connection, session: Session, now: datetime) -> int:
        cursor = conn.execute(
            """
            INSERT INTO sessions (start_time, end_time, target_duration, actual_duration,
                                  completed, focus_score, source, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (encode_timestamp(session.start_time), encode_timestamp(session.end_time),
             session.target_duration, session.actual_duration, int(bool(session.completed)),
             session.focus_score, session.source, encode_timestamp(now)),
        )
        return cursor.lastrowid

    @staticmethod
    def _insert_usage_rows(conn: sqlite3.Connection, session_id: int,
                           usage_rows: List[AppUsage], now: datetime) -> List[int]:
        ids = []
        for usage in usage_rows:
            cursor = conn.execute(
                """
                INSERT INTO app_usage (session_id, package_name, app_name, usage_time,
                                       is_whitelisted, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (session_id, usage.package_name, usage.app_name, usage.usage_time,
                 int(bool(usage.is_whitelisted)), encode_timestamp(now)),
            )
            ids.append(cursor.lastrowid)
        return ids

    # =========================================================================
    # Session Read Methods
    # =========================================================================

    def get_session(self, session_id: int) -> Optional[Session]:
        return self.run_query(queries.session_by_id(session_id))

    def get_sessions_for_date(self, date: str) -> List[Session]:
        """Sessions started on ``date`` (YYYY-MM-DD), newest first."""
        return self.run_query(queries.sessions_for_date(date))

    def get_sessions_in_range(self, start, end) -> List[Session]:
        """Sessions started within ``[start, end]``, newest first."""
        return self.run_query(queries.sessions_in_range(start, end))

    def get_recent_sessions(self, limit: int = 10) -> List[Session]:
        return self.run_query(queries.recent_sessions(limit))

    def get_active_session(self) -> Optional[Session]:
        """The most recently started session that is still open."""
        return self.run_query(queries.active_session())

    def get_app_usage_for_session(self, session_id: int) -> List[AppUsage]:
        """Usage rows of one session ordered by usage time descending."""
        return self.run_query(queries.app_usage_for_session(session_id))

    def count_sessions(self) -> int:
        return self.run_query(queries.session_count())

    def get_total_focus_time(self) -> Optional[int]:
        """Sum of actual durations over all sessions, None when there are none."""
        return self.run_query(queries.total_focus_time())

    def get_last_session_time(self) -> Optional[datetime]:
        """Start time of the most recent session, None for an empty log."""
        return self.run_query(queries.last_session_time())

    def get_total_active_days(self) -> int:
        return self.run_query(queries.total_active_days())

    def get_total_focus_time_for_period(self, start, end) -> int:
        """Focus time of finalized sessions that start and end within ``[start, end]``."""
        return self.run_query(queries.total_focus_time_for_period(start, end)) or 0

    # =========================================================================
    # Daily Mobile Usage Methods
    # =========================================================================

    def save_daily_mobile_usage(self, date: str, total_mobile_usage: int) -> DailyMobileUsage:
        """Upsert the device-wide usage sample for one date.

        Keeps the first ``created_at`` when the date already exists.
        """
        parse_date_key(date)
        if total_mobile_usage < 0:
            raise IntegrityError(f"Negative mobile usage for {date}")
        now = encode_timestamp(datetime.now())
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO daily_mobile_usage (date, total_mobile_usage, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(date) DO UPDATE SET
                    total_mobile_usage = excluded.total_mobile_usage,
                    updated_at = excluded.updated_at
                """,
                (date, total_mobile_usage, now, now),
            )
            return queries.daily_mobile_usage(date).run(conn)

    def get_daily_mobile_usage(self, date: str) -> Optional[DailyMobileUsage]:
        return self.run_query(queries.daily_mobile_usage(date))

    def get_recent_daily_mobile_usage(self, limit: int = 30) -> List[DailyMobileUsage]:
        return self.run_query(queries.recent_daily_mobile_usage(limit))

    def get_daily_mobile_usage_range(self, start_date: str, end_date: str) -> List[DailyMobileUsage]:
        """Samples dated within ``[start_date, end_date]``, newest first."""
        return self.run_query(queries.daily_mobile_usage_range(start_date, end_date))

    def get_daily_mobile_usage_count(self) -> int:
        return self.run_query(queries.daily_mobile_usage_count())

    def get_oldest_daily_mobile_usage_date(self) -> Optional[str]:
        return self.run_query(queries.oldest_daily_mobile_usage_date())

    def get_newest_daily_mobile_usage_date(self) -> Optional[str]:
        return self.run_query(queries.newest_daily_mobile_usage_date())

    def delete_daily_mobile_usage(self, date: str) -> bool:
        """Remove the sample for one date. Returns False if there was none."""
        parse_date_key(date)
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM daily_mobile_usage WHERE date = ?", (date,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.debug(f"Deleted mobile usage sample for {date}")
        return deleted

    # =========================================================================
    # Rollup Methods
    # =========================================================================

    @staticmethod
    def write_stats(conn: sqlite3.Connection, stats: PeriodSummary) -> None:
        """Replace the rollup row for ``stats.key`` inside an open transaction."""
        if not isinstance(stats, PeriodSummary):
            raise IntegrityError(f"Not a rollup row: {type(stats).__name__}")
        common = (stats.key, stats.total_sessions, stats.total_focus_time,
                  stats.completed_sessions, stats.interrupted_sessions,
                  stats.avg_focus_score, stats.total_whitelisted_time,
                  stats.total_mobile_usage)

        if isinstance(stats, DailyStats):
            validate_key(DAILY, stats.key)
            conn.execute(
                """
                INSERT OR REPLACE INTO daily_stats
                    (date, total_sessions, total_focus_time, completed_sessions,
                     interrupted_sessions, avg_focus_score, total_whitelisted_time,
                     total_mobile_usage)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                common,
            )
        elif isinstance(stats, WeeklyStats):
            validate_key(WEEKLY, stats.key)
            conn.execute(
                """
                INSERT OR REPLACE INTO weekly_stats
                    (week_key, total_sessions, total_focus_time, completed_sessions,
                     interrupted_sessions, avg_focus_score, total_whitelisted_time,
                     total_mobile_usage, completion_rate, avg_daily_focus_time,
                     best_day_date, best_day_focus_time, active_days)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                common + (stats.completion_rate, stats.avg_daily_focus_time,
                          stats.best_day_date, stats.best_day_focus_time, stats.active_days),
            )
        elif isinstance(stats, MonthlyStats):
            validate_key(MONTHLY, stats.key)
            conn.execute(
                """
                INSERT OR REPLACE INTO monthly_stats
                    (month_key, total_sessions, total_focus_time, completed_sessions,
                     interrupted_sessions, avg_focus_score, total_whitelisted_time,
                     total_mobile_usage, completion_rate, avg_daily_focus_time,
                     avg_weekly_focus_time, best_week_key, best_week_focus_time,
                     active_days)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                common + (stats.completion_rate, stats.avg_daily_focus_time,
                          stats.avg_weekly_focus_time,
                          stats.best_week_key, stats.best_week_focus_time, stats.active_days),
            )
        else:
            raise IntegrityError(f"Not a rollup row: {type(stats).__name__}")

    @staticmethod
    def delete_stats(conn: sqlite3.Connection, kind: str, key: str) -> int:
        """Delete one rollup row inside an open transaction."""
        table, column = STATS_TABLES[kind]
        cursor = conn.execute(f"DELETE FROM {table} WHERE {column} = ?", (key,))
        return cursor.rowcount

    def save_stats(self, stats: PeriodSummary) -> None:
        with self.transaction() as conn:
            self.write_stats(conn, stats)

    def save_daily_stats(self, stats: DailyStats) -> None:
        self.save_stats(stats)

    def save_weekly_stats(self, stats: WeeklyStats) -> None:
        self.save_stats(stats)

    def save_monthly_stats(self, stats: MonthlyStats) -> None:
        self.save_stats(stats)

    def get_stats(self, kind: str, key: str) -> Optional[PeriodSummary]:
        """Cached rollup for a period, None if it was never computed."""
        validate_key(kind, key)
        return self.run_query(queries.STATS_QUERIES[kind](key))

    def get_daily_stats(self, date: str) -> Optional[DailyStats]:
        return self.get_stats(DAILY, date)

    def get_weekly_stats(self, week_key: str) -> Optional[WeeklyStats]:
        return self.get_stats(WEEKLY, week_key)

    def get_monthly_stats(self, month_key: str) -> Optional[MonthlyStats]:
        return self.get_stats(MONTHLY, month_key)

    def get_daily_stats_range(self, start_date: str, end_date: str) -> List[DailyStats]:
        return self.run_query(queries.daily_stats_range(start_date, end_date))

    def get_recent_weekly_stats(self, limit: int = 4) -> List[WeeklyStats]:
        return self.run_query(queries.recent_weekly_stats(limit))

    def get_recent_monthly_stats(self, limit: int = 6) -> List[MonthlyStats]:
        return self.run_query(queries.recent_monthly_stats(limit))
