"""
Transition State Machine — turns raw proximity events into confirmed ENTRY/EXIT.

States per region (from the persisted record):
  OUTSIDE           no record
  INSIDE_PENDING    record, dwell_confirmed=False
  INSIDE_CONFIRMED  record, dwell_confirmed=True

  OUTSIDE          --ENTER--> INSIDE_PENDING
  INSIDE_PENDING   --ENTER--> INSIDE_PENDING   (enter timestamp refreshed)
  INSIDE_CONFIRMED --ENTER--> INSIDE_PENDING   (record overwritten)
  INSIDE_PENDING   --DWELL--> INSIDE_CONFIRMED  emits ENTRY
  INSIDE_CONFIRMED --DWELL--> INSIDE_CONFIRMED
  INSIDE_PENDING   --EXIT---> OUTSIDE           drive-by, silent
  INSIDE_CONFIRMED --EXIT---> OUTSIDE           emits EXIT
  OUTSIDE          --DWELL/EXIT--> OUTSIDE

Only a DWELL-confirmed stay may emit ENTRY, and only a confirmed stay may
emit EXIT. Events for unknown or disabled regions change nothing.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from geofence_kernel.clock import Clock, as_utc, utcnow
from geofence_kernel.models.transition import (
    ConfirmedTransition,
    OccupancyState,
    RawEvent,
    RawEventType,
    RegionTransitionState,
    TransitionType,
)
from geofence_kernel.observability.logging import get_logger
from geofence_kernel.registry.store import RegionRegistry
from geofence_kernel.transitions.store import TransitionStateStore

logger = get_logger(__name__)


class StepAction(str, Enum):
    CREATE = "create"
    TOUCH = "touch"
    RESET = "reset"
    CONFIRM = "confirm"
    DELETE = "delete"
    NOOP = "noop"


class TransitionStep(BaseModel):
    """Result of classifying one raw event against the current record."""

    action: StepAction
    next_state: Optional[RegionTransitionState] = None
    emits: Optional[TransitionType] = None


def occupancy_of(record: Optional[RegionTransitionState]) -> OccupancyState:
    if record is None:
        return OccupancyState.OUTSIDE
    return record.occupancy


def classify(
    current: Optional[RegionTransitionState],
    event: RawEvent,
    at: datetime,
) -> TransitionStep:
    """Pure transition function. `at` becomes the record's diagnostic timestamp."""
    state = occupancy_of(current)

    if event.event_type == RawEventType.ENTER:
        if state == OccupancyState.INSIDE_PENDING:
            return TransitionStep(
                action=StepAction.TOUCH,
                next_state=current.model_copy(update={"last_enter_at": at}),
            )
        return TransitionStep(
            action=StepAction.CREATE if current is None else StepAction.RESET,
            next_state=RegionTransitionState(
                region_id=event.region_id,
                dwell_confirmed=False,
                last_enter_at=at,
            ),
        )

    if event.event_type == RawEventType.DWELL:
        if state == OccupancyState.INSIDE_PENDING:
            return TransitionStep(
                action=StepAction.CONFIRM,
                next_state=current.model_copy(update={"dwell_confirmed": True}),
                emits=TransitionType.ENTRY,
            )
        # Confirmed: redelivery. Outside: DWELL arrived ahead of its ENTER.
        return TransitionStep(action=StepAction.NOOP, next_state=current)

    # EXIT
    if state == OccupancyState.OUTSIDE:
        return TransitionStep(action=StepAction.NOOP)
    return TransitionStep(
        action=StepAction.DELETE,
        emits=TransitionType.EXIT if state == OccupancyState.INSIDE_CONFIRMED else None,
    )


class TransitionStateMachine:
    """
    Applies classify() to the persisted record of one region at a time.

    The per-region lock covers the read-modify-write only; dispatching the
    resulting transition happens after it is released.
    """

    def __init__(
        self,
        registry: RegionRegistry,
        store: TransitionStateStore,
        clock: Optional[Clock] = None,
    ):
        self.registry = registry
        self.store = store
        self._clock = clock or utcnow

    def handle(self, event: RawEvent) -> Optional[ConfirmedTransition]:
        """
        Classify and apply one raw event. Returns the confirmed transition,
        if any. Never raises: failures are logged and the event is dropped.
        """
        region_id = event.region_id
        try:
            region = self.registry.get(region_id)
        except Exception:
            logger.exception("Registry lookup failed; event dropped", region_id=region_id)
            return None

        if region is None or not region.enabled:
            logger.debug(
                "Event for unknown or disabled region ignored",
                region_id=region_id,
                event_type=event.event_type.value,
            )
            return None

        at = as_utc(event.occurred_at) if event.occurred_at else self._clock()

        try:
            with self.store.locked(region_id):
                step = classify(self.store.get(region_id), event, at)
                if step.action == StepAction.DELETE:
                    self.store.delete(region_id)
                elif step.action != StepAction.NOOP:
                    self.store.put(step.next_state)
        except Exception:
            logger.exception(
                "Transition state update failed; event dropped",
                region_id=region_id,
                event_type=event.event_type.value,
            )
            return None

        logger.debug(
            "Raw event applied",
            region_id=region_id,
            event_type=event.event_type.value,
            action=step.action.value,
        )

        if step.emits is None:
            if step.action == StepAction.DELETE:
                logger.info("Drive-by discarded", region_id=region_id)
            return None

        return ConfirmedTransition(
            region_id=region_id,
            transition_type=step.emits,
            occurred_at=at,
        )

    def occupancy(self, region_id: str) -> OccupancyState:
        """Current occupancy of a region as seen by the state store."""
        return occupancy_of(self.store.get(region_id))

    def forget(self, region_id: str) -> None:
        """Drop a region's record, e.g. after the region itself was deleted."""
        try:
            with self.store.locked(region_id):
                self.store.delete(region_id)
        except Exception:
            logger.exception("Failed to drop transition state", region_id=region_id)
