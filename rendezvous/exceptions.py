"""
Exceptions raised by Rendezvous.
"""

from typing import Any, Optional


class RendezvousError(Exception):
    """Base class for all Rendezvous errors."""


class MalformedMessageError(RendezvousError):
    """A message could not be decoded into the envelope schema."""

    def __init__(self, detail: str, request_id: Any = None):
        super().__init__(f"Malformed message: {detail}")
        self.detail = detail
        self.request_id = request_id


class UnknownRequestTypeError(RendezvousError):
    """A request decoded fine but carries a tag the server does not handle."""

    def __init__(self, request_type: Any, request_id: Any = None):
        super().__init__(f"Unknown request type: {request_type}")
        self.request_type = request_type
        self.request_id = request_id


class SignalingError(RendezvousError):
    """The server answered a request with an Error response."""

    def __init__(self, message: str, request_id: Optional[int] = None):
        super().__init__(message)
        self.request_id = request_id


class RequestTimeoutError(RendezvousError):
    """No response arrived for a request in time."""


class ConnectionClosedError(RendezvousError):
    """The connection to the server closed while a request was pending."""
