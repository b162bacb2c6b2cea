"""Command - an immutable description of one logical request type.

A command is never mutated. ``configure`` and the ``set_*`` builders return
new commands; ``fetch`` materializes a request from the receiver, dispatches
it and resolves to a ResponseEnvelope.

Example:
    get_user = client.create_command("/users/:id", retry=2, cache_time=60)
    response = await get_user.fetch(params={"id": 1})
    if response.is_success:
        print(response.data)
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields, replace
from typing import TYPE_CHECKING, Any, Literal

from .. import events
from ..envelope import ResponseDetails, ResponseEnvelope
from ..keys import (
    QueryParamsType,
    get_abort_key,
    get_cache_key,
    get_effect_key,
    get_queue_key,
    resolve_endpoint,
    stringify_query_params,
)
from .config import CommandDump, validate_options

if TYPE_CHECKING:
    from ..client.client import Client

logger = logging.getLogger(__name__)

DispatcherType = Literal["auto", "fetch", "submit"]

# Mock callbacks return an envelope or a (data, status) tuple
MockCallback = Callable[["Command"], Any]
DataMapper = Callable[[Any], Any]

_KEY_NAMES = ("abort_key", "cache_key", "queue_key", "effect_key")


async def _call(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


@dataclass(frozen=True, eq=False)
class Command:
    """Configuration unit for one request type, bound to a client."""

    client: Client
    endpoint: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    auth: bool = True
    cancelable: bool = False
    retry: int = 0
    retry_time: float = 0.5
    garbage_collection: float = 300.0
    cache: bool = True
    cache_time: float = 300.0
    queued: bool = False
    offline: bool = True
    disable_response_interceptors: bool = False
    disable_request_interceptors: bool = False
    options: dict[str, Any] = field(default_factory=dict)
    deduplicate: bool = False
    deduplicate_time: float = 0.01

    # Call-time state
    params: Mapping[str, Any] | None = None
    query_params: QueryParamsType | None = None
    data: Any = None
    data_mapper: DataMapper | None = None
    mock: MockCallback | None = None
    used: bool = False

    # Dispatch key set; autogenerated unless the matching updated_* flag is set
    abort_key: str = ""
    cache_key: str = ""
    queue_key: str = ""
    effect_key: str = ""
    updated_abort_key: bool = False
    updated_cache_key: bool = False
    updated_queue_key: bool = False
    updated_effect_key: bool = False

    # Options the command was created with (kept for dumps)
    command_options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        derived = {
            "abort_key": get_abort_key(self.endpoint, self.method, self.params, self.query_params),
            "cache_key": get_cache_key(self.endpoint, self.method, self.params, self.query_params),
            "queue_key": get_queue_key(self.endpoint, self.method, self.params, self.query_params),
            "effect_key": get_effect_key(self.endpoint, self.method),
        }
        for name in _KEY_NAMES:
            if not getattr(self, f"updated_{name}"):
                object.__setattr__(self, name, derived[name])

    # =========================================================================
    # Builders (all return new commands)
    # =========================================================================

    def configure(self, **options: Any) -> Command:
        """Return a copy with shallow-merged option overrides.

        Passing a key (``abort_key=...``) marks it as explicitly overridden.

        Raises:
            ConfigurationError: On unknown option names or invalid values.
        """
        overrides = validate_options(options).overrides()
        for name in _KEY_NAMES:
            if name in overrides:
                overrides[f"updated_{name}"] = True
        return self._clone(**overrides)

    def _clone(self, **changes: Any) -> Command:
        return replace(self, used=True, **changes)

    def set_params(self, params: Mapping[str, Any] | None) -> Command:
        return self._clone(params=dict(params) if params is not None else None)

    def set_query_params(self, query_params: QueryParamsType | None) -> Command:
        return self._clone(query_params=query_params)

    def set_data(self, data: Any) -> Command:
        return self._clone(data=data)

    def set_data_mapper(self, data_mapper: DataMapper | None) -> Command:
        return self._clone(data_mapper=data_mapper)

    def set_headers(self, headers: Mapping[str, str]) -> Command:
        return self._clone(headers=dict(headers))

    def set_auth(self, auth: bool) -> Command:
        return self._clone(auth=auth)

    def set_cancelable(self, cancelable: bool) -> Command:
        return self._clone(cancelable=cancelable)

    def set_retry(self, retry: int) -> Command:
        return self.configure(retry=retry)

    def set_retry_time(self, retry_time: float) -> Command:
        return self.configure(retry_time=retry_time)

    def set_cache(self, cache: bool) -> Command:
        return self._clone(cache=cache)

    def set_cache_time(self, cache_time: float) -> Command:
        return self.configure(cache_time=cache_time)

    def set_garbage_collection(self, garbage_collection: float) -> Command:
        return self.configure(garbage_collection=garbage_collection)

    def set_queued(self, queued: bool) -> Command:
        return self._clone(queued=queued)

    def set_offline(self, offline: bool) -> Command:
        return self._clone(offline=offline)

    def set_deduplicate(self, deduplicate: bool) -> Command:
        return self._clone(deduplicate=deduplicate)

    def set_deduplicate_time(self, deduplicate_time: float) -> Command:
        return self.configure(deduplicate_time=deduplicate_time)

    def set_abort_key(self, abort_key: str) -> Command:
        return self._clone(abort_key=abort_key, updated_abort_key=True)

    def set_cache_key(self, cache_key: str) -> Command:
        return self._clone(cache_key=cache_key, updated_cache_key=True)

    def set_queue_key(self, queue_key: str) -> Command:
        return self._clone(queue_key=queue_key, updated_queue_key=True)

    def set_effect_key(self, effect_key: str) -> Command:
        return self._clone(effect_key=effect_key, updated_effect_key=True)

    def set_mock(self, mock: MockCallback) -> Command:
        return self._clone(mock=mock)

    def remove_mock(self) -> Command:
        return self._clone(mock=None)

    # =========================================================================
    # Derived values
    # =========================================================================

    @property
    def resolved_endpoint(self) -> str:
        """Endpoint with route params substituted.

        Raises:
            ConfigurationError: If a route param is missing.
        """
        return resolve_endpoint(self.endpoint, self.params)

    @property
    def full_endpoint(self) -> str:
        """Resolved endpoint plus encoded query string."""
        return f"{self.resolved_endpoint}{stringify_query_params(self.query_params)}"

    def build_url(self) -> str:
        """Absolute URL against the client's base URL."""
        return self.client.build_url(self.full_endpoint)

    def get_payload_data(self) -> Any:
        """Request data after the data mapper (if any)."""
        if self.data_mapper is not None and self.data is not None:
            return self.data_mapper(self.data)
        return self.data

    def validate(self) -> None:
        """Fail fast before any I/O.

        Raises:
            ConfigurationError: Missing route params, or a method the
                client's adapter does not support.
        """
        resolve_endpoint(self.endpoint, self.params)
        self.client.validate(self)

    # =========================================================================
    # Execution
    # =========================================================================

    async def fetch(
        self,
        params: Mapping[str, Any] | None = None,
        query_params: QueryParamsType | None = None,
        data: Any = None,
        dispatcher_type: DispatcherType = "auto",
        on_settle: Callable[[str, Command], Any] | None = None,
        on_request_start: Callable[[events.RequestEventProps], Any] | None = None,
        on_response_start: Callable[[events.RequestEventProps], Any] | None = None,
        on_upload_progress: Callable[[events.ProgressProps], Any] | None = None,
        on_download_progress: Callable[[events.ProgressProps], Any] | None = None,
        on_response: Callable[[ResponseEnvelope, ResponseDetails], Any] | None = None,
        on_remove: Callable[[events.RequestEventProps], Any] | None = None,
        **options: Any,
    ) -> ResponseEnvelope:
        """Materialize a request from this command, dispatch it and await the result.

        Returns:
            Exactly one ResponseEnvelope; transport failures, timeouts and
            aborts are reported in the envelope, never raised.

        Raises:
            ConfigurationError: Invalid options or missing route params,
                raised before any I/O.
        """
        request = self.configure(**options) if options else self
        if params is not None:
            request = request.set_params(params)
        if query_params is not None:
            request = request.set_query_params(query_params)
        if data is not None:
            request = request.set_data(data)
        request.validate()

        if request.cache and not self.client.is_long_lived(request):
            entry = self.client.cache.get_fresh(request.cache_key)
            if entry is not None:
                logger.debug(f"Cache hit for {request.cache_key}")
                await _call(on_response, entry.envelope, ResponseDetails(is_cached=True))
                return entry.envelope

        dispatcher = self.client.get_dispatcher(request, dispatcher_type)
        request_id = await dispatcher.add(request)
        # add() returns without yielding after scheduling, so nothing has settled yet
        pending = dispatcher.get_pending(request_id)

        unsubscribe = self._bridge_actions(
            request_id,
            on_request_start=on_request_start,
            on_response_start=on_response_start,
            on_upload_progress=on_upload_progress,
            on_download_progress=on_download_progress,
            on_response=on_response,
            on_remove=on_remove,
        )
        await _call(on_settle, request_id, request)

        try:
            envelope = await pending.future
        finally:
            # Long-lived subscriptions keep their listeners until released
            if not self.client.on_release(request_id, unsubscribe):
                unsubscribe()
        return envelope

    def _bridge_actions(self, request_id: str, **actions: Any) -> Callable[[], None]:
        """Subscribe fetch action callbacks to bus events for one request id."""
        bus = self.client.bus
        unsubscribers: list[Callable[[], None]] = []

        def bind(event_def: Any, callback: Any, adapt: Callable[[Any], tuple]) -> None:
            if callback is None:
                return

            async def handler(payload: dict[str, Any]) -> None:
                await _call(callback, *adapt(payload["properties"]))

            unsubscribers.append(bus.subscribe(event_def, handler, scope=request_id))

        bind(events.RequestStart, actions["on_request_start"], lambda p: (p,))
        bind(events.ResponseStart, actions["on_response_start"], lambda p: (p,))
        bind(events.RequestProgress, actions["on_upload_progress"], lambda p: (p,))
        bind(events.ResponseProgress, actions["on_download_progress"], lambda p: (p,))
        bind(events.Response, actions["on_response"], lambda p: (p.response, p.details))
        bind(events.RequestRemove, actions["on_remove"], lambda p: (p,))

        def unsubscribe_all() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()
            unsubscribers.clear()

        return unsubscribe_all

    async def abort(self) -> None:
        """Cancel every request sharing this command's abort key."""
        await self.client.abort(self.abort_key)

    # =========================================================================
    # Serialization
    # =========================================================================

    def dump(self) -> CommandDump:
        """Serialize configuration, call-time state and keys."""
        values = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name in CommandDump.model_fields
        }
        values["command_options"] = dict(self.command_options)
        values["params"] = dict(self.params) if self.params is not None else None
        if isinstance(self.query_params, Mapping):
            values["query_params"] = dict(self.query_params)
        return CommandDump.model_validate(values)

    @classmethod
    def restore(cls, client: Client, dump: CommandDump | Mapping[str, Any]) -> Command:
        """Rebuild an equivalent command from a dump, keeping its keys."""
        if not isinstance(dump, CommandDump):
            dump = CommandDump.model_validate(dump)
        values = dump.model_dump()
        # Keys were either derived from the same inputs or overridden; keep them verbatim
        for name in _KEY_NAMES:
            values[f"updated_{name}"] = True
        command = cls(client=client, **values)
        # Restore the original override flags without triggering re-derivation
        for name in _KEY_NAMES:
            object.__setattr__(command, f"updated_{name}", getattr(dump, f"updated_{name}"))
        return command
