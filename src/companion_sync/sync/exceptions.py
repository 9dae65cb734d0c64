"""Custom exceptions for integration sync operations."""

from typing import Optional, Dict, Any
from datetime import datetime


class SyncError(Exception):
    """Base exception for synchronization errors."""

    def __init__(self, message: str, error_code: str = "sync_error",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }


class RemoteApiError(SyncError):
    """Raised when a remote integration API call fails."""

    def __init__(self, integration: str, message: str,
                 status_code: Optional[int] = None, url: Optional[str] = None):
        if status_code is not None:
            full_message = f"{integration} request failed: {status_code} {message}"
        else:
            full_message = f"{integration} request failed: {message}"
        details = {
            "integration": integration,
            "status_code": status_code,
            "url": url
        }
        super().__init__(full_message, "remote_api_error", details)
        self.integration = integration
        self.status_code = status_code


class IntegrationNotConfiguredError(SyncError):
    """Raised when an integration has no usable credentials."""

    def __init__(self, integration: str, reason: str = "missing credentials"):
        message = f"{integration} not connected: {reason}"
        details = {
            "integration": integration,
            "reason": reason
        }
        super().__init__(message, "integration_not_configured", details)
        self.integration = integration


class StoreError(SyncError):
    """Raised when a store operation violates a constraint or fails."""

    def __init__(self, operation: str, reason: str,
                 details: Optional[Dict[str, Any]] = None):
        message = f"Store operation {operation} failed: {reason}"
        error_details = {
            "operation": operation,
            "reason": reason,
            **(details or {})
        }
        super().__init__(message, "store_error", error_details)


class CircuitOpenError(SyncError):
    """Raised when the auto-healing circuit blocks an attempt."""

    def __init__(self, integration: str, failure_count: int, open_until: Optional[datetime]):
        message = (f"Circuit open for {integration}: {failure_count} consecutive failures"
                   + (f", retry after {open_until.isoformat()}" if open_until else ""))
        details = {
            "integration": integration,
            "failure_count": failure_count,
            "open_until": open_until.isoformat() if open_until else None,
            "circuit_state": "open"
        }
        super().__init__(message, "circuit_open", details)
