"""Error taxonomy for the RobustSession protocol engine."""

from __future__ import annotations


class RobustError(Exception):
    """Base exception for RobustSession errors."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class DiscoveryFailure(RobustError):
    """Resolving a network address into targets failed."""

    def __init__(self, address: str, message: str, cause: Exception | None = None):
        super().__init__(message, cause=cause)
        self.address = address


class NetworkNotResolved(RobustError):
    """A target was requested for an address that was never resolved."""

    def __init__(self, address: str):
        super().__init__(f"Network {address!r} has not been resolved")
        self.address = address


class RequestFailure(RobustError):
    """An HTTP exchange with a single target did not succeed."""

    def __init__(
        self,
        message: str,
        target: str,
        status_code: int | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause=cause)
        self.target = target
        self.status_code = status_code


class TemporaryRequestFailure(RequestFailure):
    """Transport error or 5xx status; retried on another target."""

    pass


class PermanentRequestFailure(RequestFailure):
    """Any other non-success status; the session cannot continue."""

    pass


class MalformedResponse(RobustError):
    """A response body could not be parsed or lacks required fields."""

    def __init__(self, message: str, chunk: bytes | None = None, cause: Exception | None = None):
        super().__init__(message, cause=cause)
        self.chunk = chunk


class SessionError(RobustError):
    """Operation not possible in the current session state."""

    pass
