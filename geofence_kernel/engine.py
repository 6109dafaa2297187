"""
Geofence Engine — wires the kernel components together.

  Region Registry changes -> Monitoring Reconciler -> backend watch-set
  backend raw events -> Transition State Machine -> Notification Dispatcher
                     -> History Ledger

Every raw-event entry point returns normally whatever happens inside.
"""

from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from geofence_kernel.clock import Clock, utcnow
from geofence_kernel.config import EngineConfig
from geofence_kernel.errors import MalformedEventError
from geofence_kernel.history.ledger import HistoryLedger
from geofence_kernel.models.history import NotificationHistoryRecord
from geofence_kernel.models.region import RegistryChange, RegistryChangeKind
from geofence_kernel.models.transition import RawEvent, RawEventType
from geofence_kernel.monitoring.backend import InMemoryMonitoringBackend, MonitoringBackend
from geofence_kernel.monitoring.capabilities import CapabilityChecker, StaticCapabilityChecker
from geofence_kernel.monitoring.reconciler import MonitoringReconciler
from geofence_kernel.notifications.channel import PresentationChannel, RecordingPresentationChannel
from geofence_kernel.notifications.dispatcher import NotificationDispatcher
from geofence_kernel.notifications.throttle import NotificationThrottle
from geofence_kernel.observability.logging import get_logger
from geofence_kernel.registry.store import RegionRegistry
from geofence_kernel.runtime.pipeline import EventPipeline
from geofence_kernel.transitions.machine import TransitionStateMachine
from geofence_kernel.transitions.store import TransitionStateStore

logger = get_logger(__name__)


def parse_raw_event(payload: Dict[str, Any]) -> RawEvent:
    """Validate a backend payload. Raises MalformedEventError."""
    try:
        return RawEvent.model_validate(payload)
    except ValidationError as e:
        raise MalformedEventError(str(e)) from e


class GeofenceEngine:
    """
    Owns one instance of each kernel component. Any component can be passed
    in; the rest are built from `config`.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        registry: Optional[RegionRegistry] = None,
        backend: Optional[MonitoringBackend] = None,
        capabilities: Optional[CapabilityChecker] = None,
        channel: Optional[PresentationChannel] = None,
        state_store: Optional[TransitionStateStore] = None,
        ledger: Optional[HistoryLedger] = None,
        throttle: Optional[NotificationThrottle] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or EngineConfig()
        self.clock = clock or utcnow
        db_path = self.config.db_path

        self.registry = registry or RegionRegistry(db_path=db_path, clock=self.clock)
        self.backend = backend or InMemoryMonitoringBackend()
        self.capabilities = capabilities or StaticCapabilityChecker()
        self.channel = channel or RecordingPresentationChannel()
        self.state_store = state_store or TransitionStateStore(db_path=db_path)
        self.ledger = ledger or HistoryLedger(
            db_path=db_path, config=self.config, clock=self.clock
        )
        self.throttle = throttle or NotificationThrottle(
            window_seconds=self.config.throttle_window_seconds, clock=self.clock
        )

        self.reconciler = MonitoringReconciler(
            registry=self.registry,
            backend=self.backend,
            capabilities=self.capabilities,
            config=self.config,
            clock=self.clock,
        )
        self.machine = TransitionStateMachine(
            registry=self.registry,
            store=self.state_store,
            clock=self.clock,
        )
        self.dispatcher = NotificationDispatcher(
            registry=self.registry,
            ledger=self.ledger,
            channel=self.channel,
            capabilities=self.capabilities,
            throttle=self.throttle,
            config=self.config,
            clock=self.clock,
        )
        self.pipeline = EventPipeline(
            handler=self.handle_event,
            worker_count=self.config.worker_count,
            queue_maxsize=self.config.queue_maxsize,
        )
        self._started = False

    # --- lifecycle ---

    def start(self) -> None:
        """Subscribe to registry changes and run the process-start reconcile."""
        if self._started:
            return
        self.registry.subscribe(self._on_registry_change)
        self._started = True
        self.reconciler.sync_from_registry()

    def stop(self) -> None:
        if not self._started:
            return
        self.registry.unsubscribe(self._on_registry_change)
        self._started = False

    def _on_registry_change(self, change: RegistryChange) -> None:
        if change.kind == RegistryChangeKind.DELETED:
            self.machine.forget(change.region_id)
        self.reconciler.on_registry_change(change)

    # --- raw events ---

    def handle_event(self, event: RawEvent) -> Optional[NotificationHistoryRecord]:
        """Classify one raw event and dispatch the confirmed transition, if any."""
        try:
            transition = self.machine.handle(event)
            if transition is None:
                return None
            return self.dispatcher.dispatch(transition)
        except Exception:
            logger.exception("Raw event processing failed", region_id=event.region_id)
            return None

    def on_raw_event(
        self,
        region_id: str,
        event_type: Union[RawEventType, str],
        occurred_at: Optional[datetime] = None,
    ) -> Optional[NotificationHistoryRecord]:
        """Backend callback: one raw event for one region."""
        return self.submit_payload(
            {"region_id": region_id, "event_type": event_type, "occurred_at": occurred_at}
        )

    def submit_payload(self, payload: Dict[str, Any]) -> Optional[NotificationHistoryRecord]:
        """Parse and handle an untyped payload; malformed payloads are dropped."""
        try:
            event = parse_raw_event(payload)
        except MalformedEventError as e:
            logger.warning("Malformed raw event dropped", error=str(e))
            return None
        return self.handle_event(event)

    def enqueue_payload(self, payload: Dict[str, Any]) -> bool:
        """Parse a payload and hand it to the worker pipeline."""
        try:
            event = parse_raw_event(payload)
        except MalformedEventError as e:
            logger.warning("Malformed raw event dropped", error=str(e))
            return False
        return self.pipeline.submit(event)

    def close(self) -> None:
        self.stop()
        self.registry.close()
        self.state_store.close()
        self.ledger.close()
