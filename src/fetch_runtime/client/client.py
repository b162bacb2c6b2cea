"""Client - owns the adapter, dispatchers, cache, bus and managers.

The client is the composition root: commands are created from it, and every
component reaches its collaborators through it.

Example:
    async with Client("https://api.example.com") as client:
        get_user = client.create_command("/users/:id")
        response = await get_user.fetch(params={"id": 1})
"""

from __future__ import annotations

import dataclasses
import inspect
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ..adapters import BufferedHttpAdapter, MockAdapter, StreamingHttpAdapter
from ..adapters.utils import encode_payload
from ..bus import EventBus
from ..cache import Cache, CacheStorage
from ..command import Command, DispatcherType, validate_options
from ..config import ClientConfig
from ..dispatcher import Dispatcher, DispatcherStorage
from ..envelope import ResponseEnvelope
from ..errors import ConfigurationError
from ..managers import AbortManager, AppManager
from .bindings import RequestBindings

if TYPE_CHECKING:
    from ..adapters.base import Adapter

logger = logging.getLogger(__name__)

# Auth and request interceptors map a Command to a Command
RequestInterceptor = Callable[[Command], Any]
# Response interceptors map (envelope, request) to an envelope
ResponseInterceptor = Callable[[ResponseEnvelope, Command], Any]


async def _apply(callback: Callable[..., Any], *args: Any) -> Any:
    result = callback(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class Client:
    """Request engine entry point."""

    def __init__(
        self,
        base_url: str | None = None,
        adapter: Adapter | None = None,
        config: ClientConfig | None = None,
        cache_storage: CacheStorage | None = None,
        fetch_storage: DispatcherStorage | None = None,
        submit_storage: DispatcherStorage | None = None,
        is_online: bool = True,
    ) -> None:
        config = config or ClientConfig()
        if base_url is not None:
            config = dataclasses.replace(config, base_url=base_url)
        self.config = config

        self.bus = EventBus()
        self.abort_manager = AbortManager()
        self.app_manager = AppManager(self.bus, is_online=is_online)
        self.cache = Cache(cache_storage)

        if adapter is None:
            adapter_cls = StreamingHttpAdapter if self.config.streaming else BufferedHttpAdapter
            adapter = adapter_cls(chunk_size=self.config.chunk_size)
        self.adapter: Adapter = adapter
        self.mock_adapter = MockAdapter()

        self.fetch_dispatcher: Dispatcher = Dispatcher(self, fetch_storage, name="fetch")
        self.submit_dispatcher: Dispatcher = Dispatcher(self, submit_storage, name="submit")

        self._auth_interceptors: list[RequestInterceptor] = []
        self._request_interceptors: list[RequestInterceptor] = []
        self._response_interceptors: list[ResponseInterceptor] = []
        self._success_interceptors: list[ResponseInterceptor] = []
        self._error_interceptors: list[ResponseInterceptor] = []

        # request_id -> cleanups for long-lived requests (subscriptions)
        self._live: dict[str, list[Callable[[], None]]] = {}

    @property
    def base_url(self) -> str:
        return self.config.base_url

    # =========================================================================
    # Commands
    # =========================================================================

    def create_command(self, endpoint: str, **options: Any) -> Command:
        """Create a command bound to this client.

        Unset options fall back to the client's config defaults. An unset
        method falls back to the adapter's default method.

        Raises:
            ConfigurationError: On unknown option names or invalid values.
        """
        overrides = validate_options({"endpoint": endpoint, **options}).overrides()
        values: dict[str, Any] = {
            "method": getattr(self.adapter, "default_method", "GET"),
            "retry_time": self.config.default_retry_time,
            "cache_time": self.config.default_cache_time,
            "garbage_collection": self.config.default_garbage_collection,
            "deduplicate_time": self.config.default_deduplicate_time,
        }
        values.update(overrides)
        for name in ("abort_key", "cache_key", "queue_key", "effect_key"):
            if name in overrides:
                values[f"updated_{name}"] = True
        return Command(client=self, command_options=overrides, **values)

    def build_url(self, endpoint: str) -> str:
        """Join an endpoint onto the base URL (absolute URLs pass through)."""
        if endpoint.startswith(("http://", "https://")) or not self.base_url:
            return endpoint
        return f"{self.base_url.rstrip('/')}/{endpoint.lstrip('/')}"

    def validate(self, request: Command) -> None:
        """Adapter-level validation, before dispatch."""
        validate = getattr(self.get_adapter(request), "validate", None)
        if validate is not None:
            validate(request)

    def get_adapter(self, request: Command) -> Adapter:
        return self.mock_adapter if request.mock is not None else self.adapter

    def is_long_lived(self, request: Command) -> bool:
        """Subscriptions outlive their first response and bypass the cache."""
        check = getattr(self.get_adapter(request), "is_long_lived", None)
        return bool(check(request)) if check is not None else False

    def get_dispatcher(self, request: Command, dispatcher_type: DispatcherType = "auto") -> Dispatcher:
        """Pick the dispatcher: reads go to fetch, everything else to submit."""
        if dispatcher_type == "fetch":
            return self.fetch_dispatcher
        if dispatcher_type == "submit":
            return self.submit_dispatcher
        if dispatcher_type != "auto":
            raise ConfigurationError(f"Unknown dispatcher type: {dispatcher_type}")
        is_read = request.method.upper() == "GET"
        return self.fetch_dispatcher if is_read else self.submit_dispatcher

    # =========================================================================
    # Interceptors
    # =========================================================================

    def on_auth(self, callback: RequestInterceptor) -> Client:
        """Run ``callback(request) -> request`` for commands with ``auth=True``."""
        self._auth_interceptors.append(callback)
        return self

    def on_request(self, callback: RequestInterceptor) -> Client:
        self._request_interceptors.append(callback)
        return self

    def on_response(self, callback: ResponseInterceptor) -> Client:
        self._response_interceptors.append(callback)
        return self

    def on_success(self, callback: ResponseInterceptor) -> Client:
        self._success_interceptors.append(callback)
        return self

    def on_error(self, callback: ResponseInterceptor) -> Client:
        self._error_interceptors.append(callback)
        return self

    async def run_request_interceptors(self, request: Command) -> Command:
        if request.auth:
            for callback in self._auth_interceptors:
                request = await _apply(callback, request)
        if not request.disable_request_interceptors:
            for callback in self._request_interceptors:
                request = await _apply(callback, request)
        return request

    async def run_response_interceptors(
        self, envelope: ResponseEnvelope, request: Command
    ) -> ResponseEnvelope:
        if request.disable_response_interceptors:
            return envelope
        outcome = self._success_interceptors if envelope.is_success else self._error_interceptors
        for callback in [*outcome, *self._response_interceptors]:
            envelope = await _apply(callback, envelope, request)
        return envelope

    async def get_bindings(self, request: Command, request_id: str) -> RequestBindings:
        """Build the event sink and resolved request tuple for one attempt."""
        request = await self.run_request_interceptors(request)
        data = request.get_payload_data()
        payload, headers = encode_payload(data, request.headers)
        timeout = request.options.get("timeout", self.config.timeout)
        return RequestBindings(
            self,
            request,
            request_id,
            full_url=self.build_url(request.full_endpoint),
            endpoint=request.resolved_endpoint,
            headers=headers,
            payload=payload,
            data=data,
            timeout=float(timeout),
        )

    # =========================================================================
    # Abort
    # =========================================================================

    async def abort(self, abort_key: str) -> int:
        """Abort every request (queued, sleeping, in flight or subscribed) with the key.

        Returns:
            Number of requests aborted
        """
        count = await self.fetch_dispatcher.abort_by_key(abort_key)
        count += await self.submit_dispatcher.abort_by_key(abort_key)
        count += self.abort_manager.abort_by_key(abort_key)
        logger.debug(f"Aborted {count} request(s) for {abort_key}")
        return count

    async def abort_by_request_id(self, request_id: str) -> bool:
        if await self.fetch_dispatcher.abort_by_request_id(request_id):
            return True
        if await self.submit_dispatcher.abort_by_request_id(request_id):
            return True
        return self.abort_manager.abort_by_request_id(request_id)

    # =========================================================================
    # Long-lived requests
    # =========================================================================

    def keep_alive(self, request_id: str, release: Callable[[], None]) -> None:
        """Keep a request alive past its first response until released."""
        self._live.setdefault(request_id, []).insert(0, release)

    def on_release(self, request_id: str, callback: Callable[[], None]) -> bool:
        """Run ``callback`` when a live request is released.

        Returns:
            False if the request is not live (caller should clean up now)
        """
        if request_id not in self._live:
            return False
        self._live[request_id].append(callback)
        return True

    def release(self, request_id: str) -> bool:
        """End a long-lived request and run its cleanups."""
        cleanups = self._live.pop(request_id, None)
        if cleanups is None:
            return False
        for cleanup in cleanups:
            cleanup()
        logger.debug(f"Released {request_id}")
        return True

    def is_live(self, request_id: str) -> bool:
        return request_id in self._live

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def aclose(self) -> None:
        """Abort outstanding work, release subscriptions and close the adapter."""
        await self.fetch_dispatcher.clear()
        await self.submit_dispatcher.clear()
        for request_id in list(self._live):
            self.release(request_id)
        self.cache.clear()
        close = getattr(self.adapter, "aclose", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
