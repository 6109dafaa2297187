"""Capability checks (location and notification access) consulted by the kernel."""

from typing import Protocol


class CapabilityChecker(Protocol):
    def has_foreground_location_access(self) -> bool:
        ...

    def has_background_location_access(self) -> bool:
        ...

    def has_notification_access(self) -> bool:
        ...


class StaticCapabilityChecker:
    """Capabilities held as plain flags; flip them to simulate revoked access."""

    def __init__(
        self,
        foreground_location: bool = True,
        background_location: bool = True,
        notifications: bool = True,
    ):
        self.foreground_location = foreground_location
        self.background_location = background_location
        self.notifications = notifications

    def has_foreground_location_access(self) -> bool:
        return self.foreground_location

    def has_background_location_access(self) -> bool:
        return self.background_location

    def has_notification_access(self) -> bool:
        return self.notifications
