"""Event type definitions.

All lifecycle events that flow through a client's EventBus are defined here.
Request-level events are published unscoped and scoped to the request id,
queue key, abort key and cache key of the request.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .bus import EventBus
from .envelope import ResponseDetails, ResponseEnvelope

# =============================================================================
# Request lifecycle (one attempt)
# =============================================================================


class RequestEventProps(BaseModel):
    """Identity of the request an event belongs to."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    request_id: str
    queue_key: str
    abort_key: str
    cache_key: str
    effect_key: str
    # The materialized Command; excluded from dumps
    request: Any = Field(default=None, exclude=True)


class ProgressProps(RequestEventProps):
    """Upload or download progress."""

    loaded: int
    total: int | None = None
    progress: float | None = None  # percent, 0-100
    time_left: float | None = None  # seconds
    size_left: int | None = None  # bytes
    start_timestamp: float


class AttemptResultProps(RequestEventProps):
    """Outcome of a single transport attempt."""

    response: ResponseEnvelope


RequestBefore = EventBus.define("request.before", RequestEventProps)
RequestStart = EventBus.define("request.start", RequestEventProps)
RequestProgress = EventBus.define("request.progress", ProgressProps)
RequestEnd = EventBus.define("request.end", RequestEventProps)
ResponseStart = EventBus.define("response.start", RequestEventProps)
ResponseProgress = EventBus.define("response.progress", ProgressProps)
ResponseSuccess = EventBus.define("response.success", AttemptResultProps)
ResponseError = EventBus.define("response.error", AttemptResultProps)
ResponseEnd = EventBus.define("response.end", RequestEventProps)


# =============================================================================
# Dispatch events (whole request, across retries)
# =============================================================================


class ResponseProps(RequestEventProps):
    """Final envelope of a request, or one emission of a subscription."""

    response: ResponseEnvelope
    details: ResponseDetails


class RetryProps(RequestEventProps):
    """A failed attempt is about to be retried."""

    attempt: int
    delay: float


Response = EventBus.define("response", ResponseProps)
RequestAbort = EventBus.define("request.abort", RequestEventProps)
RequestRemove = EventBus.define("request.remove", RequestEventProps)
RequestRetry = EventBus.define("request.retry", RetryProps)
RequestOffline = EventBus.define("request.offline", RequestEventProps)


# =============================================================================
# Queue and app events
# =============================================================================


class QueueProps(BaseModel):
    """A queue changed state."""

    queue_key: str


class AppProps(BaseModel):
    """Connectivity changed."""

    is_online: bool


QueueDrained = EventBus.define("queue.drained", QueueProps)
AppOnline = EventBus.define("app.online", AppProps)
AppOffline = EventBus.define("app.offline", AppProps)


# =============================================================================
# Helpers
# =============================================================================


def request_identity(request_id: str, request: Any) -> dict[str, Any]:
    """Identity fields shared by every request-level event."""
    return {
        "request_id": request_id,
        "queue_key": request.queue_key,
        "abort_key": request.abort_key,
        "cache_key": request.cache_key,
        "effect_key": request.effect_key,
        "request": request,
    }


def request_scopes(request_id: str, request: Any) -> list[str]:
    """Scopes a request-level event is delivered to."""
    return [request_id, request.queue_key, request.abort_key, request.cache_key]
