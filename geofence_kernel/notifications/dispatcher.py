"""
Notification Dispatcher — confirmed transition in, at most one notification out.

Behavioral Contract:
- No-op without notification access, for missing/disabled regions, and when
  the region's per-transition preference is off.
- Throttle stamp first, presentation second, history write third. Nothing is
  recorded for a presentation that failed.
- A failed presentation or history write never re-opens the throttle window:
  duplicate user-visible notifications are worse than a missing history row.
- Never raises to the caller.
"""

from typing import Optional, Tuple

from geofence_kernel.clock import Clock, utcnow
from geofence_kernel.config import EngineConfig
from geofence_kernel.history.ledger import HistoryLedger
from geofence_kernel.models.history import NotificationHistoryRecord
from geofence_kernel.models.region import Region
from geofence_kernel.models.transition import ConfirmedTransition, TransitionType
from geofence_kernel.monitoring.capabilities import CapabilityChecker
from geofence_kernel.notifications.channel import PresentationChannel
from geofence_kernel.notifications.throttle import NotificationThrottle
from geofence_kernel.observability.logging import get_logger
from geofence_kernel.registry.store import RegionRegistry

logger = get_logger(__name__)


def compose_notification(region: Region, transition_type: TransitionType) -> Tuple[str, str]:
    """Title and message for a transition; per-region overrides replace the message only."""
    if transition_type == TransitionType.ENTRY:
        title = f"Arrived at {region.name}"
        message = region.entry_message.strip() or f"You arrived at {region.name}"
    else:
        title = f"Left {region.name}"
        message = region.exit_message.strip() or f"You left {region.name}"
    return title, message


def wants_notification(region: Region, transition_type: TransitionType) -> bool:
    if transition_type == TransitionType.ENTRY:
        return region.notify_on_entry
    return region.notify_on_exit


class NotificationDispatcher:
    """Presents and records notifications for confirmed transitions."""

    def __init__(
        self,
        registry: RegionRegistry,
        ledger: HistoryLedger,
        channel: PresentationChannel,
        capabilities: CapabilityChecker,
        throttle: NotificationThrottle,
        config: Optional[EngineConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.registry = registry
        self.ledger = ledger
        self.channel = channel
        self.capabilities = capabilities
        self.throttle = throttle
        self.config = config or EngineConfig()
        self._clock = clock or utcnow

    def dispatch(self, transition: ConfirmedTransition) -> Optional[NotificationHistoryRecord]:
        """
        Dispatch one confirmed transition. Returns the history record that was
        built for it, or None when nothing was presented.
        """
        try:
            return self._dispatch(transition)
        except Exception:
            logger.exception(
                "Notification dispatch failed",
                region_id=transition.region_id,
                transition=transition.transition_type.value,
            )
            return None

    def _dispatch(self, transition: ConfirmedTransition) -> Optional[NotificationHistoryRecord]:
        region_id = transition.region_id
        transition_type = transition.transition_type

        if not self.capabilities.has_notification_access():
            logger.debug("Notifications disabled by user", region_id=region_id)
            return None

        region = self.registry.get(region_id)
        if region is None or not region.enabled:
            logger.debug("Region gone or disabled before dispatch", region_id=region_id)
            return None

        if not wants_notification(region, transition_type):
            return None

        title, message = compose_notification(region, transition_type)

        if not self.throttle.try_acquire(region_id, transition_type):
            logger.info(
                "Notification throttled",
                region_id=region_id,
                transition=transition_type.value,
            )
            return None

        record = NotificationHistoryRecord(
            region_id=region_id,
            region_name=region.name,
            title=title,
            message=message,
            transition_type=transition_type,
            dispatched_at=self._clock(),
        )

        try:
            self.channel.present(title, message, self.config.deep_link_for(region_id))
        except Exception:
            logger.exception(
                "Presentation failed",
                region_id=region_id,
                transition=transition_type.value,
            )
            return None

        try:
            self.ledger.append(record)
        except Exception:
            logger.exception(
                "History write failed",
                region_id=region_id,
                transition=transition_type.value,
            )

        logger.info(
            "Notification dispatched",
            region_id=region_id,
            transition=transition_type.value,
        )
        return record
