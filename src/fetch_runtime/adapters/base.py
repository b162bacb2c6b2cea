"""Adapter abstraction for transport executors.

An adapter performs one transport attempt for a materialized request and
resolves to exactly one ResponseEnvelope. Adapters never raise for
transport outcomes; failures, timeouts and aborts come back as error
envelopes through the request bindings.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from ..envelope import ResponseEnvelope, is_success_status
from ..errors import TransportError
from .utils import parse_error_response, parse_response

if TYPE_CHECKING:
    from ..client.bindings import RequestBindings
    from ..command import Command

logger = logging.getLogger(__name__)

# Options forwarded from Command.options to httpx
HTTPX_OPTIONS = ("follow_redirects", "extensions")


@runtime_checkable
class Adapter(Protocol):
    """Transport executor contract."""

    async def __call__(self, request: Command, request_id: str) -> ResponseEnvelope: ...


class BaseAdapter(ABC):
    """Runs one exchange per attempt, with timeout and abort handling.

    Subclasses implement ``exchange`` and report progress and the outcome
    through the bindings.
    """

    default_method = "GET"

    async def __call__(self, request: Command, request_id: str) -> ResponseEnvelope:
        bindings = await request.client.get_bindings(request, request_id)
        await bindings.on_before_request()

        exchange = asyncio.create_task(self._run_exchange(bindings))
        unmount = bindings.create_abort_listener(exchange.cancel)
        try:
            envelope = await bindings.result
            if not bindings.aborted:
                # Let the exchange publish response-end before the attempt returns
                await asyncio.wait([exchange])
            return envelope
        finally:
            unmount()
            if not exchange.done():
                exchange.cancel()

    async def _run_exchange(self, bindings: RequestBindings) -> None:
        try:
            await asyncio.wait_for(self.exchange(bindings), timeout=bindings.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            await bindings.on_timeout_error()
        except (httpx.HTTPError, OSError) as e:
            logger.debug(f"Connection failed for {bindings.full_url}: {e}")
            await bindings.on_error(TransportError(f"Connection failed: {e}", status=0), status=0)
        except Exception as e:
            logger.exception(f"Adapter failed for {bindings.full_url}")
            await bindings.on_error(TransportError(f"Adapter failed: {e}", status=0), status=0)

        if not bindings.settled:
            await bindings.on_error(
                TransportError("Transport finished without a response", status=0), status=0
            )

    @abstractmethod
    async def exchange(self, bindings: RequestBindings) -> None:
        """Perform the transport exchange, reporting through ``bindings``."""
        ...

    def validate(self, request: Command) -> None:
        """Reject requests this adapter cannot execute (before dispatch)."""
        return None

    async def aclose(self) -> None:
        return None


class BaseHttpAdapter(BaseAdapter):
    """Shared httpx plumbing for the buffered and streaming HTTP adapters."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        chunk_size: int = 64 * 1024,
    ) -> None:
        self._http_client = http_client
        self._transport = transport
        self._owns_client = http_client is None
        self.chunk_size = chunk_size

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(transport=self._transport)
        return self._http_client

    def request_options(self, bindings: RequestBindings) -> dict[str, Any]:
        """httpx keyword arguments for one attempt."""
        options: dict[str, Any] = {
            "headers": bindings.headers,
            "timeout": httpx.Timeout(bindings.timeout),
        }
        for name in HTTPX_OPTIONS:
            if name in bindings.config:
                options[name] = bindings.config[name]
        return options

    async def read_response(self, bindings: RequestBindings, response: httpx.Response) -> None:
        """Stream the body with download progress, then settle."""
        await bindings.on_response_start()

        total_header = response.headers.get("content-length")
        total = int(total_header) if total_header and total_header.isdigit() else None
        body = bytearray()
        async for chunk in response.aiter_bytes():
            body.extend(chunk)
            await bindings.on_response_progress(len(body), total)

        headers = dict(response.headers)
        status = response.status_code
        if is_success_status(status):
            await bindings.on_success(parse_response(bytes(body)), status, headers)
        else:
            error_body = parse_error_response(bytes(body))
            await bindings.on_error(
                TransportError(
                    f"{bindings.method.upper()} {bindings.full_url} failed with status {status}",
                    status=status,
                    body=error_body,
                ),
                status,
                headers,
            )
        await bindings.on_response_end()

    async def aclose(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
