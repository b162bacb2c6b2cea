"""Error taxonomy for request execution.

ConfigurationError is raised synchronously, before any I/O. Every other error
is carried inside a ResponseEnvelope's ``error`` field instead of being raised.
"""

from __future__ import annotations

from typing import Any


class FetchError(Exception):
    """Base class for all request errors."""

    pass


class ConfigurationError(FetchError, ValueError):
    """Raised when a command cannot be executed as configured.

    Examples: a missing route parameter, an unknown realtime method,
    an unknown option name passed to ``configure``.
    """

    pass


class TransportError(FetchError):
    """The transport completed with a non-success outcome."""

    def __init__(self, message: str, status: int = 0, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class RequestTimeoutError(TransportError):
    """No response arrived within the configured timeout."""

    def __init__(self, message: str = "Request timed out", body: Any = None) -> None:
        super().__init__(message, status=0, body=body)


class RealtimeError(TransportError):
    """A realtime backend reported a failure."""

    STATUS = 500

    def __init__(self, message: str, body: Any = None) -> None:
        super().__init__(message, status=self.STATUS, body=body)


class AbortError(FetchError):
    """The request was cancelled. Never retried."""

    def __init__(self, message: str = "Request aborted") -> None:
        super().__init__(message)
