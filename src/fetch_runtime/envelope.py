"""Response envelope - the single result shape of every request attempt.

Success:  {"data": ..., "error": None, "status": 200}
Failure:  {"data": None, "error": TransportError(...), "status": 404}

Callers always receive exactly one envelope per fetch, never an exception,
so every completion can be awaited uniformly.
"""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import FetchError


def is_success_status(status: int) -> bool:
    """Classify a transport status code.

    2xx and 3xx are success; everything else (including 0 for connection
    failures and timeouts) is an error. Redirects count as success.
    """
    return 200 <= status < 400


class ResponseEnvelope(BaseModel):
    """Tri-state result of one request: data or error, plus status."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    data: Any = None
    error: FetchError | None = None
    status: int
    headers: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_exclusive(self) -> ResponseEnvelope:
        if self.error is not None and self.data is not None:
            raise ValueError("Envelope cannot carry both data and error")
        return self

    @property
    def is_success(self) -> bool:
        """True when this envelope represents a successful response."""
        return self.error is None

    @classmethod
    def success(
        cls, data: Any, status: int = 200, headers: dict[str, str] | None = None
    ) -> ResponseEnvelope:
        """Create a success envelope."""
        return cls(data=data, error=None, status=status, headers=headers or {})

    @classmethod
    def failure(
        cls, error: FetchError, status: int = 0, headers: dict[str, str] | None = None
    ) -> ResponseEnvelope:
        """Create an error envelope."""
        return cls(data=None, error=error, status=status, headers=headers or {})


class ResponseDetails(BaseModel):
    """Metadata published alongside the final envelope of a request."""

    retries: int = 0
    timestamp: float = Field(default_factory=time.time)
    is_canceled: bool = False
    is_offline: bool = False
    is_cached: bool = False
