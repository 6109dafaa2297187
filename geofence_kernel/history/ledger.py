"""
History Ledger — append-only log of dispatched notifications with rolling retention.

Behavioral Contract:
- append() is a pure insert (no dedup) followed by an opportunistic purge of
  records outside the retention window. A failed purge never fails the append.
- recent()/for_region() return live views, newest first, refreshed on every
  ledger change.
- clear() removes everything (explicit user action).
- The dispatcher is the only writer.
"""

import sqlite3
import threading
from datetime import timedelta
from typing import Callable, Iterator, List, Optional

from geofence_kernel.clock import Clock, as_utc, utcnow
from geofence_kernel.config import EngineConfig
from geofence_kernel.models.history import NotificationHistoryRecord
from geofence_kernel.observability.logging import get_logger

logger = get_logger(__name__)

ViewListener = Callable[[List[NotificationHistoryRecord]], None]


class HistoryView:
    """
    Query result that stays current: the ledger re-runs the query after
    every change and pushes the new list to subscribers.
    """

    def __init__(
        self,
        ledger: "HistoryLedger",
        query: Callable[[], List[NotificationHistoryRecord]],
    ):
        self._ledger = ledger
        self._query = query
        self._lock = threading.Lock()
        self._listeners: List[ViewListener] = []
        self._records: List[NotificationHistoryRecord] = query()
        self._closed = False

    @property
    def records(self) -> List[NotificationHistoryRecord]:
        with self._lock:
            return list(self._records)

    def subscribe(self, listener: ViewListener) -> None:
        self._listeners.append(listener)

    def refresh(self) -> None:
        if self._closed:
            return
        records = self._query()
        with self._lock:
            self._records = records
        for listener in list(self._listeners):
            try:
                listener(list(records))
            except Exception:
                logger.exception("History view listener failed")

    def close(self) -> None:
        """Stop receiving updates."""
        self._closed = True
        self._ledger._detach(self)

    def __iter__(self) -> Iterator[NotificationHistoryRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class HistoryLedger:
    """
    SQLite-backed notification history.
    Indexed by dispatch time for window queries and by region for diagnostics.
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        config: Optional[EngineConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.db_path = db_path
        self.config = config or EngineConfig()
        self._clock = clock or utcnow
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._db_lock = threading.RLock()
        self._views: List[HistoryView] = []
        self._views_lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the notification_history table if it doesn't exist."""
        with self._db_lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS notification_history (
                    id TEXT PRIMARY KEY,
                    region_id TEXT NOT NULL,
                    region_name TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    transition_type TEXT NOT NULL,
                    dispatched_at TEXT NOT NULL,
                    dispatched_ts REAL NOT NULL,
                    record_json TEXT NOT NULL
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_history_dispatched
                ON notification_history(dispatched_ts)
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_history_region
                ON notification_history(region_id)
            """)
            self._conn.commit()

    # --- writes ---

    def append(self, record: NotificationHistoryRecord) -> NotificationHistoryRecord:
        """Insert a record, then trim anything outside the retention window."""
        dispatched_at = as_utc(record.dispatched_at)
        record = record.model_copy(update={"dispatched_at": dispatched_at})

        with self._db_lock:
            self._conn.execute(
                """
                INSERT INTO notification_history (
                    id, region_id, region_name, title, message,
                    transition_type, dispatched_at, dispatched_ts, record_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.region_id,
                    record.region_name,
                    record.title,
                    record.message,
                    record.transition_type.value,
                    dispatched_at.isoformat(),
                    dispatched_at.timestamp(),
                    record.model_dump_json(),
                ),
            )
            self._conn.commit()

        try:
            self.purge_older_than(self.config.retention_days, notify=False)
        except Exception:
            logger.exception("History purge after append failed")

        self._changed()
        return record

    def purge_older_than(self, window_days: int, notify: bool = True) -> int:
        """Delete records dispatched before now - window_days. Returns the count."""
        cutoff = self._cutoff(window_days)
        with self._db_lock:
            cursor = self._conn.execute(
                "DELETE FROM notification_history WHERE dispatched_ts < ?",
                (cutoff,),
            )
            self._conn.commit()
        deleted = cursor.rowcount
        if deleted:
            logger.info("History purged", deleted=deleted, window_days=window_days)
        if notify:
            self._changed()
        return deleted

    def clear(self) -> int:
        """Delete all records."""
        with self._db_lock:
            cursor = self._conn.execute("DELETE FROM notification_history")
            self._conn.commit()
        logger.info("History cleared", deleted=cursor.rowcount)
        self._changed()
        return cursor.rowcount

    # --- queries ---

    def _cutoff(self, window_days: int) -> float:
        return (as_utc(self._clock()) - timedelta(days=window_days)).timestamp()

    def _deserialize(self, row: sqlite3.Row) -> NotificationHistoryRecord:
        return NotificationHistoryRecord.model_validate_json(row["record_json"])

    def query_recent(self, window_days: Optional[int] = None) -> List[NotificationHistoryRecord]:
        """Snapshot of records inside the window, newest first."""
        days = window_days if window_days is not None else self.config.retention_days
        with self._db_lock:
            rows = self._conn.execute(
                "SELECT record_json FROM notification_history "
                "WHERE dispatched_ts >= ? ORDER BY dispatched_ts DESC, rowid DESC",
                (self._cutoff(days),),
            ).fetchall()
        return [self._deserialize(r) for r in rows]

    def query_for_region(
        self, region_id: str, window_days: Optional[int] = None
    ) -> List[NotificationHistoryRecord]:
        """Snapshot for one region inside the window, newest first."""
        days = window_days if window_days is not None else self.config.retention_days
        with self._db_lock:
            rows = self._conn.execute(
                "SELECT record_json FROM notification_history "
                "WHERE region_id = ? AND dispatched_ts >= ? "
                "ORDER BY dispatched_ts DESC, rowid DESC",
                (region_id, self._cutoff(days)),
            ).fetchall()
        return [self._deserialize(r) for r in rows]

    def recent(self, window_days: Optional[int] = None) -> HistoryView:
        """Live view of query_recent(window_days)."""
        return self._attach(HistoryView(self, lambda: self.query_recent(window_days)))

    def for_region(self, region_id: str, window_days: Optional[int] = None) -> HistoryView:
        """Live view of query_for_region(region_id, window_days)."""
        return self._attach(
            HistoryView(self, lambda: self.query_for_region(region_id, window_days))
        )

    def get_by_id(self, record_id: str) -> Optional[NotificationHistoryRecord]:
        with self._db_lock:
            row = self._conn.execute(
                "SELECT record_json FROM notification_history WHERE id = ?",
                (record_id,),
            ).fetchone()
        return self._deserialize(row) if row else None

    def count(self) -> int:
        """Total number of stored records, inside the window or not."""
        with self._db_lock:
            row = self._conn.execute(
                "SELECT COUNT(*) as cnt FROM notification_history"
            ).fetchone()
        return row["cnt"]

    # --- live views ---

    def _attach(self, view: HistoryView) -> HistoryView:
        with self._views_lock:
            self._views.append(view)
        return view

    def _detach(self, view: HistoryView) -> None:
        with self._views_lock:
            if view in self._views:
                self._views.remove(view)

    def _changed(self) -> None:
        with self._views_lock:
            views = list(self._views)
        for view in views:
            try:
                view.refresh()
            except Exception:
                logger.exception("History view refresh failed")

    def close(self) -> None:
        """Close the database connection."""
        with self._views_lock:
            self._views.clear()
        self._conn.close()
