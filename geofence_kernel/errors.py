"""Exception types raised inside the kernel."""


class GeofenceError(Exception):
    """Base class for kernel errors."""
    pass


class RegionNotFoundError(GeofenceError):
    """Raised when an explicit registry operation targets an unknown region."""

    def __init__(self, region_id: str):
        super().__init__(f"Region not found: {region_id}")
        self.region_id = region_id


class MalformedEventError(GeofenceError):
    """Raised when a raw backend payload cannot be parsed."""
    pass


class BackendError(GeofenceError):
    """Raised by monitoring backends when a register/unregister call fails."""
    pass
