"""
Region Registry — CRUD store of region definitions.

Behavioral Contract:
- Owns no behavior beyond persistence and change notification.
- Every mutation notifies subscribers with a RegistryChange.
- Listener failures are logged and never reach the caller.
- get() returns None for unknown ids; require() raises RegionNotFoundError.
"""

import sqlite3
import threading
from typing import Callable, List, Optional

from geofence_kernel.clock import Clock, utcnow
from geofence_kernel.errors import RegionNotFoundError
from geofence_kernel.models.region import Region, RegistryChange, RegistryChangeKind
from geofence_kernel.observability.logging import get_logger

logger = get_logger(__name__)

RegistryListener = Callable[[RegistryChange], None]


class RegionRegistry:
    """
    SQLite-backed region store.
    One shared connection; statements are serialized by a connection lock.
    """

    def __init__(self, db_path: str = ":memory:", clock: Optional[Clock] = None):
        self.db_path = db_path
        self._clock = clock or utcnow
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._db_lock = threading.RLock()
        self._listeners: List[RegistryListener] = []
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the regions table if it doesn't exist."""
        with self._db_lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS regions (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    record_json TEXT NOT NULL
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_regions_enabled ON regions(enabled)
            """)
            self._conn.commit()

    # --- change notification ---

    def subscribe(self, listener: RegistryListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: RegistryListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, kind: RegistryChangeKind, region_id: str) -> None:
        change = RegistryChange(kind=kind, region_id=region_id)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception(
                    "Registry listener failed",
                    change=kind.value,
                    region_id=region_id,
                )

    # --- CRUD ---

    def _write(self, region: Region) -> None:
        with self._db_lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO regions (id, name, enabled, record_json)
                VALUES (?, ?, ?, ?)
                """,
                (
                    region.id,
                    region.name,
                    int(region.enabled),
                    region.model_dump_json(),
                ),
            )
            self._conn.commit()

    def add(self, region: Region) -> Region:
        """Insert a new region. Re-adding an existing id replaces it."""
        now = self._clock()
        region = region.model_copy(
            update={"created_at": region.created_at or now, "updated_at": now}
        )
        self._write(region)
        logger.info("Region added", region_id=region.id, enabled=region.enabled)
        self._notify(RegistryChangeKind.ADDED, region.id)
        return region

    def update(self, region: Region) -> Region:
        """Replace an existing region's definition. The id is immutable."""
        existing = self.require(region.id)
        region = region.model_copy(
            update={"created_at": existing.created_at, "updated_at": self._clock()}
        )
        self._write(region)
        logger.info("Region updated", region_id=region.id, enabled=region.enabled)
        self._notify(RegistryChangeKind.UPDATED, region.id)
        return region

    def set_enabled(self, region_id: str, enabled: bool) -> Region:
        """Toggle monitoring for a region."""
        region = self.require(region_id)
        return self.update(region.model_copy(update={"enabled": enabled}))

    def delete(self, region_id: str) -> bool:
        """Remove a region. Returns False if it did not exist."""
        with self._db_lock:
            cursor = self._conn.execute(
                "DELETE FROM regions WHERE id = ?", (region_id,)
            )
            self._conn.commit()
        if cursor.rowcount == 0:
            return False
        logger.info("Region deleted", region_id=region_id)
        self._notify(RegistryChangeKind.DELETED, region_id)
        return True

    # --- queries ---

    def _deserialize(self, row: sqlite3.Row) -> Region:
        return Region.model_validate_json(row["record_json"])

    def get(self, region_id: str) -> Optional[Region]:
        """Get a region by ID, or None."""
        with self._db_lock:
            row = self._conn.execute(
                "SELECT record_json FROM regions WHERE id = ?", (region_id,)
            ).fetchone()
        return self._deserialize(row) if row else None

    def require(self, region_id: str) -> Region:
        region = self.get(region_id)
        if region is None:
            raise RegionNotFoundError(region_id)
        return region

    def list_regions(self) -> List[Region]:
        """All regions, ordered by name."""
        with self._db_lock:
            rows = self._conn.execute(
                "SELECT record_json FROM regions ORDER BY name, id"
            ).fetchall()
        return [self._deserialize(r) for r in rows]

    def list_enabled(self) -> List[Region]:
        """The desired monitoring set."""
        with self._db_lock:
            rows = self._conn.execute(
                "SELECT record_json FROM regions WHERE enabled = 1 ORDER BY name, id"
            ).fetchall()
        return [self._deserialize(r) for r in rows]

    def count(self) -> int:
        with self._db_lock:
            row = self._conn.execute("SELECT COUNT(*) as cnt FROM regions").fetchone()
        return row["cnt"]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
