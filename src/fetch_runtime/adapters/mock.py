"""Mock adapter for testing.

Resolves requests from canned responses or a command's ``mock`` callback,
with no I/O, while still emitting the full lifecycle event sequence.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..envelope import ResponseEnvelope, is_success_status
from ..errors import FetchError, TransportError
from .base import BaseAdapter
from .utils import get_upload_size

if TYPE_CHECKING:
    from ..client.bindings import RequestBindings
    from ..command import Command

logger = logging.getLogger(__name__)


@dataclass
class MockResponse:
    """A canned response."""

    data: Any = None
    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    delay: float = 0.0


class MockAdapter(BaseAdapter):
    """Mock executor.

    Usage:
        adapter = MockAdapter()
        adapter.set_response("/users/1", {"id": 1})

        client = Client(adapter=adapter)
        response = await client.create_command("/users/:id").fetch(params={"id": 1})

        assert adapter.recorded_requests[0].resolved_endpoint == "/users/1"

    Commands with ``mock`` set resolve from the callback instead. The callback
    receives the request and returns a ResponseEnvelope, a ``(data, status)``
    tuple, or plain data (status 200).
    """

    def __init__(self) -> None:
        self._responses: dict[str, MockResponse] = {}
        self._recorded_requests: list[Command] = []

    @property
    def recorded_requests(self) -> list[Command]:
        """All requests executed through this adapter."""
        return self._recorded_requests.copy()

    def set_response(
        self,
        endpoint: str,
        data: Any = None,
        status: int = 200,
        method: str = "GET",
        delay: float = 0.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Set the canned response for a method and endpoint.

        Args:
            endpoint: Resolved endpoint ("/users/1") or template ("/users/:id")
            data: Response data (error body when status is not a success)
            status: Response status
            method: HTTP method
            delay: Seconds to wait before responding (abortable)
        """
        self._responses[_response_key(method, endpoint)] = MockResponse(
            data=data, status=status, headers=headers or {}, delay=delay
        )

    def clear(self) -> None:
        """Clear recorded requests and canned responses."""
        self._recorded_requests.clear()
        self._responses.clear()

    async def exchange(self, bindings: RequestBindings) -> None:
        request = bindings.request
        self._recorded_requests.append(request)
        response = await self._resolve(request, bindings.endpoint)

        size = get_upload_size(bindings.payload)
        await bindings.on_request_start()
        await bindings.on_request_progress(size, size)
        await bindings.on_request_end()

        if response.delay:
            await asyncio.sleep(response.delay)

        await bindings.on_response_start()
        if isinstance(response.data, FetchError):
            await bindings.on_error(response.data, response.status, response.headers)
        elif is_success_status(response.status):
            await bindings.on_success(response.data, response.status, response.headers)
        else:
            await bindings.on_error(
                TransportError(
                    f"Mock response failed with status {response.status}",
                    status=response.status,
                    body=response.data,
                ),
                response.status,
                response.headers,
            )
        await bindings.on_response_end()

    async def _resolve(self, request: Command, endpoint: str) -> MockResponse:
        if request.mock is not None:
            result = request.mock(request)
            if inspect.isawaitable(result):
                result = await result
            return _to_response(result)

        candidates = (endpoint, request.endpoint)
        for key in (_response_key(request.method, candidate) for candidate in candidates):
            if key in self._responses:
                return self._responses[key]
        return MockResponse(data={"mock": True})


def _response_key(method: str, endpoint: str) -> str:
    return f"{method.upper()} {endpoint}"


def _to_response(result: Any) -> MockResponse:
    if isinstance(result, MockResponse):
        return result
    if isinstance(result, ResponseEnvelope):
        data = result.data if result.is_success else result.error
        return MockResponse(data=data, status=result.status, headers=dict(result.headers))
    if isinstance(result, tuple) and len(result) == 2:
        data, status = result
        return MockResponse(data=data, status=status)
    return MockResponse(data=result)
