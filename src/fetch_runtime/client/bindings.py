"""Request bindings - the event sink handed to transport adapters.

One RequestBindings instance exists per transport attempt. It carries the
resolved request tuple (url, method, headers, payload, config, timeout),
one method per lifecycle phase, and abort registration.

The attempt resolves exactly once: whichever of success, error, timeout
or abort reaches ``_settle`` first wins; later calls are ignored. Once an
abort is observed no further events are published for the attempt.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .. import events
from ..adapters.utils import get_progress_data
from ..envelope import ResponseDetails, ResponseEnvelope
from ..errors import AbortError, FetchError, RequestTimeoutError, TransportError

if TYPE_CHECKING:
    from ..client.client import Client
    from ..command import Command

logger = logging.getLogger(__name__)


class RequestBindings:
    """Lifecycle event sink plus exactly-once resolution for one attempt."""

    def __init__(
        self,
        client: Client,
        request: Command,
        request_id: str,
        *,
        full_url: str,
        endpoint: str,
        headers: dict[str, str],
        payload: bytes | None,
        data: Any,
        timeout: float,
    ) -> None:
        self.client = client
        self.request = request
        self.request_id = request_id
        self.full_url = full_url
        self.endpoint = endpoint
        self.method = request.method
        self.headers = headers
        self.payload = payload
        self.data = data
        self.timeout = timeout

        self.result: asyncio.Future[ResponseEnvelope] = asyncio.get_running_loop().create_future()
        self._settled = False
        self._aborted = False
        self.request_start_time: float | None = None
        self.response_start_time: float | None = None

    @property
    def config(self) -> dict[str, Any]:
        """Transport-specific options of the command."""
        return self.request.options

    @property
    def settled(self) -> bool:
        return self._settled

    @property
    def aborted(self) -> bool:
        return self._aborted

    def props(self) -> events.RequestEventProps:
        return events.RequestEventProps(**self._identity())

    def _identity(self) -> dict[str, Any]:
        return events.request_identity(self.request_id, self.request)

    async def _publish(self, event_def: Any, properties: Any) -> None:
        if self._aborted:
            return
        await self.client.bus.publish(
            event_def, properties, scopes=events.request_scopes(self.request_id, self.request)
        )

    # =========================================================================
    # Request phase
    # =========================================================================

    async def on_before_request(self) -> None:
        await self._publish(events.RequestBefore, self.props())

    async def on_request_start(self) -> None:
        self.request_start_time = time.monotonic()
        await self._publish(events.RequestStart, self.props())

    async def on_request_progress(self, loaded: int, total: int | None) -> None:
        start = self.request_start_time or time.monotonic()
        await self._publish(
            events.RequestProgress,
            events.ProgressProps(
                **self._identity(),
                loaded=loaded,
                total=total,
                start_timestamp=start,
                **get_progress_data(start, loaded, total),
            ),
        )

    async def on_request_end(self) -> None:
        await self._publish(events.RequestEnd, self.props())

    # =========================================================================
    # Response phase
    # =========================================================================

    async def on_response_start(self) -> None:
        self.response_start_time = time.monotonic()
        await self._publish(events.ResponseStart, self.props())

    async def on_response_progress(self, loaded: int, total: int | None) -> None:
        start = self.response_start_time or time.monotonic()
        await self._publish(
            events.ResponseProgress,
            events.ProgressProps(
                **self._identity(),
                loaded=loaded,
                total=total,
                start_timestamp=start,
                **get_progress_data(start, loaded, total),
            ),
        )

    async def on_success(
        self, data: Any, status: int = 200, headers: dict[str, str] | None = None
    ) -> ResponseEnvelope | None:
        """Resolve the attempt with data. Ignored once settled."""
        if self._settled:
            return None
        envelope = ResponseEnvelope.success(data, status=status, headers=headers)
        envelope = await self.client.run_response_interceptors(envelope, self.request)
        if self._settled:
            return None
        await self._publish(
            events.ResponseSuccess,
            events.AttemptResultProps(**self._identity(), response=envelope),
        )
        self._settle(envelope)
        return envelope

    async def on_error(
        self, error: Any, status: int = 0, headers: dict[str, str] | None = None
    ) -> ResponseEnvelope | None:
        """Resolve the attempt with an error. Non-FetchError values become TransportError."""
        if self._settled:
            return None
        if not isinstance(error, FetchError):
            if isinstance(error, BaseException):
                error = TransportError(f"Request failed: {error}", status=status, body=None)
            else:
                error = TransportError(
                    f"Request failed with status {status}", status=status, body=error
                )
        envelope = ResponseEnvelope.failure(error, status=status, headers=headers)
        envelope = await self.client.run_response_interceptors(envelope, self.request)
        if self._settled:
            return None
        await self._publish(
            events.ResponseError,
            events.AttemptResultProps(**self._identity(), response=envelope),
        )
        self._settle(envelope)
        return envelope

    async def on_timeout_error(self) -> ResponseEnvelope | None:
        logger.debug(f"Request {self.request_id} timed out after {self.timeout}s")
        return await self.on_error(RequestTimeoutError(), status=0)

    def on_abort_error(self) -> bool:
        """Resolve the attempt as aborted. Suppresses every later event."""
        if self._settled:
            return False
        self._aborted = True
        self._settle(ResponseEnvelope.failure(AbortError(), status=0))
        return True

    async def on_response_end(self) -> None:
        await self._publish(events.ResponseEnd, self.props())

    # =========================================================================
    # Abort and long-lived requests
    # =========================================================================

    def create_abort_listener(self, terminate: Callable[[], Any]) -> Callable[[], None]:
        """Register ``terminate`` to run when this request is aborted.

        The attempt is resolved as aborted before ``terminate`` runs, so the
        transport cannot deliver success or error afterwards.

        Returns:
            Unmount function
        """

        def abort() -> None:
            if self.on_abort_error():
                terminate()

        return self.client.abort_manager.register(self.request.abort_key, self.request_id, abort)

    def keep_alive(self, release: Callable[[], None]) -> None:
        """Mark this request as long-lived (subscriptions); ``release`` ends it."""
        self.client.keep_alive(self.request_id, release)

    async def emit(self, data: Any, status: int = 200) -> None:
        """Publish a follow-up emission of a long-lived request as a response event."""
        if self._aborted:
            return
        envelope = ResponseEnvelope.success(data, status=status)
        await self._publish(
            events.Response,
            events.ResponseProps(**self._identity(), response=envelope, details=ResponseDetails()),
        )

    async def emit_error(self, error: FetchError, status: int) -> None:
        if self._aborted:
            return
        envelope = ResponseEnvelope.failure(error, status=status)
        await self._publish(
            events.Response,
            events.ResponseProps(**self._identity(), response=envelope, details=ResponseDetails()),
        )

    def _settle(self, envelope: ResponseEnvelope) -> None:
        self._settled = True
        if not self.result.done():
            self.result.set_result(envelope)
