"""
Exception hierarchy for the monitoring backend.

Connection and collector errors are caught at their boundary and turned into
device status; the API layer renders the rest through ``to_dict()``.
"""

from typing import Any


class MonitorError(Exception):
    """Base exception for all monitoring errors."""

    error_code = "MONITOR_ERROR"

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a structured error payload."""
        return {
            "error": self.error_code,
            "message": self.message,
            "context": self.context,
        }


class DeviceConnectionError(MonitorError):
    """Device unreachable or authentication failed."""

    error_code = "CONNECTION_ERROR"

    def __init__(
        self,
        message: str,
        device_id: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = dict(context or {})
        if device_id is not None:
            context.setdefault("device_id", device_id)
        super().__init__(message, context)
        self.device_id = device_id


class NotConnectedError(DeviceConnectionError):
    """Raised when a device operation needs a live session."""

    error_code = "NOT_CONNECTED"


class InputValidationError(MonitorError):
    """Malformed API or configuration input."""

    error_code = "VALIDATION_ERROR"


class ResourceNotFoundError(MonitorError):
    """Raised when a referenced row does not exist."""

    error_code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: int) -> None:
        super().__init__(f"{resource} {resource_id} not found", {"id": resource_id})
        self.resource = resource
        self.resource_id = resource_id


class DeviceNotFoundError(ResourceNotFoundError):
    """Raised when a device id does not exist."""

    def __init__(self, device_id: int) -> None:
        super().__init__("Device", device_id)
        self.context = {"device_id": device_id}
        self.device_id = device_id


class PredictorError(MonitorError):
    """External inference process failed."""

    error_code = "ANALYSIS_UNAVAILABLE"


class StorageError(MonitorError):
    """Persistence failure."""

    error_code = "STORAGE_ERROR"
