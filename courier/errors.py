"""Error types for the loader, queue and transports.

None of these are meant to reach the host application: delivery failures end
up re-queued, load failures end up in a failed load future, and storage
failures degrade to in-memory behaviour.
"""


class CourierError(Exception):
    """Base class for courier errors."""


class TransientDeliveryFailure(CourierError):
    """Network error, timeout or non-success response during delivery."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ModuleLoadError(CourierError):
    """An add-on could not be fetched, verified or executed."""

    def __init__(self, name: str, location: str = None, reason: str = None):
        message = f"Failed to load add-on '{name}'"
        if location:
            message += f" from {location}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.name = name
        self.location = location
        self.reason = reason


class IntegrityError(ModuleLoadError):
    """Fetched add-on source does not match its integrity token."""


class StorageUnavailable(CourierError):
    """Durable storage cannot be read or written."""
