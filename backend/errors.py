"""
Exception types raised by the portal components.

Handlers in main.py map these onto HTTP status codes.
"""


class PortalError(Exception):
    """Base class for portal errors."""


class StorageUnavailableError(PortalError):
    """The relational store failed; the session has been rolled back."""


class AttendanceInactiveError(PortalError):
    """A heartbeat arrived while the attendance gate was closed."""


class InvalidBranchError(PortalError, ValueError):
    """Branch is not one of the configured church locations."""


class InvalidStreamUrlError(PortalError, ValueError):
    """A stream URL could not be reduced to a video or channel."""


class YouTubeAPIError(PortalError):
    """The video-platform search API returned an error or was unreachable."""

    def __init__(self, message: str, status_code: int = None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload
