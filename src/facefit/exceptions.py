"""
Error taxonomy for storage and delivery failures.

Missing landmarks are not represented here: a pair whose landmarks are not
resolved in a frame is simply omitted from that frame's sample.
"""

from typing import List, Optional


class FacefitError(Exception):
    """Base class for all facefit errors."""
    kind = "error"
    retryable = False


class StorageError(FacefitError):
    """Offline queue file could not be read, written or deleted."""
    kind = "storage"


class NetworkError(FacefitError):
    """Transport failure or timeout while talking to the server."""
    kind = "network"
    retryable = True


class ValidationError(FacefitError):
    """Server rejected the payload (422)."""
    kind = "validation"

    def __init__(self, messages: Optional[List[str]] = None):
        self.messages = list(messages or [])
        text = ", ".join(self.messages) if self.messages else "Validation failed"
        super().__init__(f"Validation error: {text}")


class Unauthorized(FacefitError):
    """Server refused the session token (401)."""
    kind = "unauthorized"

    def __init__(self, message: str = "Unauthorized access"):
        super().__init__(message)


class ServerError(FacefitError):
    """Any unexpected status code."""
    kind = "server"
    retryable = True

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"Server error: {status_code}")
