"""
Transition State Store — one occupancy record per region, persisted across restarts.

Behavioral Contract:
- Record present  -> region occupied (INSIDE_PENDING / INSIDE_CONFIRMED).
- Record absent   -> OUTSIDE.
- Read-modify-write for one region runs under that region's lock only;
  different regions never contend.
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from geofence_kernel.models.transition import RegionTransitionState


class KeyedLockArena:
    """
    Per-key mutexes created on demand and released when no holder or
    waiter remains.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._refs: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
                self._refs[key] = 0
            self._refs[key] += 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._refs[key] -= 1
                if self._refs[key] == 0:
                    del self._refs[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class TransitionStateStore:
    """
    SQLite-backed store for RegionTransitionState.
    Prototype: SQLite. Callers wrap get/put/delete in locked(region_id).
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._db_lock = threading.RLock()
        self._arena = KeyedLockArena()
        self._init_schema()

    def _init_schema(self) -> None:
        with self._db_lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS region_transition_states (
                    region_id TEXT PRIMARY KEY,
                    dwell_confirmed INTEGER NOT NULL DEFAULT 0,
                    last_enter_at TEXT,
                    last_exit_at TEXT
                )
            """)
            self._conn.commit()

    @contextmanager
    def locked(self, region_id: str) -> Iterator[None]:
        """Exclusive section for one region's read-modify-write."""
        with self._arena.hold(region_id):
            yield

    def _deserialize(self, row: sqlite3.Row) -> RegionTransitionState:
        return RegionTransitionState(
            region_id=row["region_id"],
            dwell_confirmed=bool(row["dwell_confirmed"]),
            last_enter_at=_parse_ts(row["last_enter_at"]),
            last_exit_at=_parse_ts(row["last_exit_at"]),
        )

    def get(self, region_id: str) -> Optional[RegionTransitionState]:
        with self._db_lock:
            row = self._conn.execute(
                "SELECT * FROM region_transition_states WHERE region_id = ?",
                (region_id,),
            ).fetchone()
        return self._deserialize(row) if row else None

    def put(self, state: RegionTransitionState) -> None:
        """Insert or overwrite the record for state.region_id."""
        with self._db_lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO region_transition_states (
                    region_id, dwell_confirmed, last_enter_at, last_exit_at
                ) VALUES (?, ?, ?, ?)
                """,
                (
                    state.region_id,
                    int(state.dwell_confirmed),
                    _ts(state.last_enter_at),
                    _ts(state.last_exit_at),
                ),
            )
            self._conn.commit()

    def delete(self, region_id: str) -> bool:
        with self._db_lock:
            cursor = self._conn.execute(
                "DELETE FROM region_transition_states WHERE region_id = ?",
                (region_id,),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def list_states(self) -> List[RegionTransitionState]:
        with self._db_lock:
            rows = self._conn.execute(
                "SELECT * FROM region_transition_states ORDER BY region_id"
            ).fetchall()
        return [self._deserialize(r) for r in rows]

    def clear(self) -> None:
        with self._db_lock:
            self._conn.execute("DELETE FROM region_transition_states")
            self._conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
