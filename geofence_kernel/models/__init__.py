"""Geofence kernel data models."""

from geofence_kernel.models.history import NotificationDateGroup, NotificationHistoryRecord
from geofence_kernel.models.monitoring import ReconcileReport
from geofence_kernel.models.region import (
    GeoPoint,
    Region,
    RegistryChange,
    RegistryChangeKind,
)
from geofence_kernel.models.transition import (
    ConfirmedTransition,
    OccupancyState,
    RawEvent,
    RawEventType,
    RegionTransitionState,
    TransitionType,
)

__all__ = [
    "ConfirmedTransition",
    "GeoPoint",
    "NotificationDateGroup",
    "NotificationHistoryRecord",
    "OccupancyState",
    "RawEvent",
    "RawEventType",
    "ReconcileReport",
    "Region",
    "RegionTransitionState",
    "RegistryChange",
    "RegistryChangeKind",
    "TransitionType",
]
