"""
Monitoring Reconciler — keeps the backend watch-set equal to the enabled regions.

Behavioral Contract:
- The desired set is always recomputed from the full registry snapshot,
  never from a diff. A region flipped to disabled drops out simply by not
  being re-registered.
- Each pass unregisters the entire watch-set first, then re-registers
  enabled regions one at a time, only while background location access
  is held. Without it the watch-set is left empty.
- Registration is keyed by region id, so re-registering is idempotent.
- Passes are serialized: a pass reads its snapshot and applies it to the
  backend before another pass may start.
- Never raises: backend failures are logged and reported.
"""

import threading
from typing import Iterable, Optional

from geofence_kernel.clock import Clock, utcnow
from geofence_kernel.config import EngineConfig
from geofence_kernel.models.monitoring import ReconcileReport
from geofence_kernel.models.region import Region, RegistryChange
from geofence_kernel.monitoring.backend import MonitoringBackend
from geofence_kernel.monitoring.capabilities import CapabilityChecker
from geofence_kernel.observability.logging import get_logger
from geofence_kernel.registry.store import RegionRegistry

logger = get_logger(__name__)


class MonitoringReconciler:
    """
    Drives the monitoring backend from the Region Registry.

    Reconcile passes register with initial_trigger=False so a bulk
    re-registration does not replay ENTER events for regions the device
    is already inside.
    """

    def __init__(
        self,
        registry: RegionRegistry,
        backend: MonitoringBackend,
        capabilities: CapabilityChecker,
        config: Optional[EngineConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.registry = registry
        self.backend = backend
        self.capabilities = capabilities
        self.config = config or EngineConfig()
        self._clock = clock or utcnow
        self._last_report: Optional[ReconcileReport] = None
        self._pass_lock = threading.Lock()

    @property
    def last_report(self) -> Optional[ReconcileReport]:
        """Report of the most recent reconcile pass."""
        return self._last_report

    def reconcile(self, desired: Iterable[Region]) -> ReconcileReport:
        """Replace the backend watch-set with the enabled members of `desired`."""
        with self._pass_lock:
            return self._reconcile(desired)

    def _reconcile(self, desired: Iterable[Region]) -> ReconcileReport:
        report = ReconcileReport(started_at=self._clock())

        try:
            self.backend.unregister_all()
            report.cleared = True
        except Exception:
            logger.exception("Failed to clear monitoring watch-set")
            report.skipped_reason = "unregister_all_failed"
            self._last_report = report
            return report

        if not self._has_location_access():
            logger.info("Background location access missing; watch-set left empty")
            report.skipped_reason = "no_background_location_access"
            self._last_report = report
            return report

        for region in desired:
            if not region.enabled:
                continue
            if self._register(region, initial_trigger=False):
                report.registered.append(region.id)
            else:
                report.failed.append(region.id)

        logger.info(
            "Monitoring reconciled",
            registered=len(report.registered),
            failed=len(report.failed),
        )
        self._last_report = report
        return report

    def sync_from_registry(self) -> ReconcileReport:
        """Reconcile against a fresh snapshot of the registry."""
        with self._pass_lock:
            try:
                desired = self.registry.list_enabled()
            except Exception:
                logger.exception("Failed to read registry for reconciliation")
                report = ReconcileReport(
                    started_at=self._clock(), skipped_reason="registry_unavailable"
                )
                self._last_report = report
                return report
            return self._reconcile(desired)

    def on_registry_change(self, change: RegistryChange) -> None:
        """Registry listener: every change triggers a full reconcile."""
        logger.debug(
            "Registry changed; reconciling",
            change=change.kind.value,
            region_id=change.region_id,
        )
        self.sync_from_registry()

    def refresh_region(self, region: Region) -> bool:
        """
        Single-region update: unregister, then register again if the region
        is enabled and location access is held. Returns True if the region
        ends up watched.
        """
        with self._pass_lock:
            try:
                self.backend.unregister_region(region.id)
            except Exception:
                logger.exception("Failed to unregister region", region_id=region.id)
                return False

            if not region.enabled or not self._has_location_access():
                return False
            return self._register(region, initial_trigger=True)

    def _has_location_access(self) -> bool:
        try:
            return bool(self.capabilities.has_background_location_access())
        except Exception:
            logger.exception("Capability check failed")
            return False

    def _register(self, region: Region, initial_trigger: bool) -> bool:
        try:
            self.backend.register_region(
                region.id,
                region.center,
                region.radius_meters,
                self.config.dwell_delay_seconds,
                initial_trigger=initial_trigger,
            )
            return True
        except Exception:
            logger.exception("Failed to register region", region_id=region.id)
            return False
