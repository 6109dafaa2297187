"""
Monitoring backend boundary.

The backend watches circular regions and raises raw ENTER/DWELL/EXIT
events. It has no update primitive: changing a region means
unregister-then-register.
"""

import threading
from typing import Dict, List, Protocol

from pydantic import BaseModel

from geofence_kernel.errors import BackendError
from geofence_kernel.models.region import GeoPoint


class MonitoringBackend(Protocol):
    """Operations the kernel consumes from the location-monitoring backend."""

    def register_region(
        self,
        region_id: str,
        center: GeoPoint,
        radius_meters: float,
        dwell_delay_seconds: int,
        initial_trigger: bool = True,
    ) -> None:
        ...

    def unregister_region(self, region_id: str) -> None:
        ...

    def unregister_all(self) -> None:
        ...


class WatchRegistration(BaseModel):
    """One entry in a backend's watch-set."""

    region_id: str
    center: GeoPoint
    radius_meters: float
    dwell_delay_seconds: int
    initial_trigger: bool = True


class InMemoryMonitoringBackend:
    """
    Watch-set kept in a dict keyed by region id (last write wins).
    Used as the default backend and in tests; real deployments plug in the
    platform geofencing client behind the same methods.
    """

    def __init__(self):
        self._watched: Dict[str, WatchRegistration] = {}
        self._lock = threading.Lock()
        self.calls: List[str] = []

    def register_region(
        self,
        region_id: str,
        center: GeoPoint,
        radius_meters: float,
        dwell_delay_seconds: int,
        initial_trigger: bool = True,
    ) -> None:
        if radius_meters <= 0:
            raise BackendError(f"Invalid radius for {region_id}: {radius_meters}")
        with self._lock:
            self._watched[region_id] = WatchRegistration(
                region_id=region_id,
                center=center,
                radius_meters=radius_meters,
                dwell_delay_seconds=dwell_delay_seconds,
                initial_trigger=initial_trigger,
            )
            self.calls.append(f"register:{region_id}")

    def unregister_region(self, region_id: str) -> None:
        with self._lock:
            self._watched.pop(region_id, None)
            self.calls.append(f"unregister:{region_id}")

    def unregister_all(self) -> None:
        with self._lock:
            self._watched.clear()
            self.calls.append("unregister_all")

    def watched(self) -> List[WatchRegistration]:
        """Snapshot of the current watch-set, ordered by region id."""
        with self._lock:
            return [self._watched[k] for k in sorted(self._watched)]

    def watched_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._watched)
