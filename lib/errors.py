"""
Exception taxonomy for the booking bridge.

- ConfigurationError: a required secret/credential/id is missing or invalid.
- AuthorizationError: bad shared secret or bad webhook signature.
- MalformedInputError: unparsable payload or unexpected upstream shape.
- UpstreamError: non-success response (or embedded error code) from an
  external collaborator.
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""


class ConfigurationError(BridgeError):
    """Raised when configuration is missing or invalid."""


class AuthorizationError(BridgeError):
    """Raised when an inbound request fails authentication."""


class MalformedInputError(BridgeError):
    """Raised when a payload or upstream response has an unexpected shape."""


class UpstreamError(BridgeError):
    """Raised when a call to an external service fails."""

    def __init__(self, operation: str, status_code: Optional[int] = None, body: str = ""):
        self.operation = operation
        self.status_code = status_code
        self.body = body or ""
        status = status_code if status_code is not None else "n/a"
        super().__init__(f"{operation} failed (status {status}): {self.body[:500]}")
