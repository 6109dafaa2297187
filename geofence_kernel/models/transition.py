"""Raw proximity events, per-region transition state, confirmed transitions."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class RawEventType(str, Enum):
    """Unfiltered boundary signals raised by the monitoring backend."""
    ENTER = "ENTER"
    DWELL = "DWELL"
    EXIT = "EXIT"


class TransitionType(str, Enum):
    """User-visible, confirmed transitions."""
    ENTRY = "ENTRY"
    EXIT = "EXIT"


class OccupancyState(str, Enum):
    OUTSIDE = "OUTSIDE"
    INSIDE_PENDING = "INSIDE_PENDING"
    INSIDE_CONFIRMED = "INSIDE_CONFIRMED"


class RawEvent(BaseModel):
    """One backend delivery, addressed to a single region."""

    region_id: str = Field(min_length=1)
    event_type: RawEventType
    occurred_at: Optional[datetime] = None


class RegionTransitionState(BaseModel):
    """
    Persisted occupancy record. Existence means "occupied"; absence means
    OUTSIDE. Timestamps are diagnostic only.
    """

    region_id: str
    dwell_confirmed: bool = False
    last_enter_at: Optional[datetime] = None
    last_exit_at: Optional[datetime] = None

    @property
    def occupancy(self) -> OccupancyState:
        if self.dwell_confirmed:
            return OccupancyState.INSIDE_CONFIRMED
        return OccupancyState.INSIDE_PENDING


class ConfirmedTransition(BaseModel):
    """Output of the state machine, input of the dispatcher."""

    region_id: str
    transition_type: TransitionType
    occurred_at: datetime
