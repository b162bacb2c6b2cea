"""Realtime adapter - executes commands against a document or key-value backend.

The operation table is chosen once, from the backend variant. The command's
``method`` names the operation, its resolved endpoint is the path, and
``query_params={"constraints": [...]}`` carries query constraints.

Subscriptions (``on_snapshot`` / ``on_value``) resolve the attempt with the
first emission. Later emissions are published as ``response`` events under
the same request id until ``unsubscribe(request_id)`` or an abort.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..adapters.base import BaseAdapter
from ..errors import ConfigurationError, RealtimeError
from .backends import (
    Constraint,
    DocumentStore,
    KeyValueStore,
    OnError,
    OnNext,
    RealtimeBackend,
    Unsubscribe,
)

if TYPE_CHECKING:
    from ..client.bindings import RequestBindings
    from ..command import Command

logger = logging.getLogger(__name__)

SUCCESS_STATUS = 200


@dataclass
class RealtimeCall:
    """Arguments of one backend operation."""

    path: str
    data: Any = None
    constraints: list[Constraint] = field(default_factory=list)


Operation = Callable[[Any, RealtimeCall], Awaitable[Any]]
Subscription = Callable[[Any, RealtimeCall, OnNext, OnError], Awaitable[Unsubscribe]]


DOCUMENT_OPERATIONS: dict[str, Operation] = {
    "get": lambda handle, call: handle.get(call.path),
    "query": lambda handle, call: handle.query(call.path, call.constraints),
    "set": lambda handle, call: handle.set(call.path, call.data),
    "add": lambda handle, call: handle.add(call.path, call.data),
    "update": lambda handle, call: handle.update(call.path, call.data),
    "remove": lambda handle, call: handle.remove(call.path),
}
DOCUMENT_SUBSCRIPTIONS: dict[str, Subscription] = {
    "on_snapshot": lambda handle, call, on_next, on_error: handle.on_snapshot(
        call.path, call.constraints, on_next, on_error
    ),
}

KEY_VALUE_OPERATIONS: dict[str, Operation] = {
    "get": lambda handle, call: handle.get(call.path),
    "set": lambda handle, call: handle.set(call.path, call.data),
    "push": lambda handle, call: handle.push(call.path, call.data),
    "update": lambda handle, call: handle.update(call.path, call.data),
    "remove": lambda handle, call: handle.remove(call.path),
}
KEY_VALUE_SUBSCRIPTIONS: dict[str, Subscription] = {
    "on_value": lambda handle, call, on_next, on_error: handle.on_value(
        call.path, call.constraints, on_next, on_error
    ),
}


def get_constraints(query_params: Any) -> list[Constraint]:
    """Constraints of a request. Mappings (from a restored dump) become Constraint."""
    if not isinstance(query_params, Mapping):
        return []
    return [
        Constraint(**item) if isinstance(item, Mapping) else item
        for item in query_params.get("constraints") or []
    ]


class RealtimeAdapter(BaseAdapter):
    """Executor over a tagged realtime backend."""

    def __init__(self, backend: RealtimeBackend) -> None:
        self.backend = backend
        if isinstance(backend, DocumentStore):
            self.operations = DOCUMENT_OPERATIONS
            self.subscriptions = DOCUMENT_SUBSCRIPTIONS
            self.default_method = "on_snapshot"
        elif isinstance(backend, KeyValueStore):
            self.operations = KEY_VALUE_OPERATIONS
            self.subscriptions = KEY_VALUE_SUBSCRIPTIONS
            self.default_method = "on_value"
        else:
            raise ConfigurationError(f"Unsupported realtime backend: {type(backend).__name__}")

        # request_id -> release for live subscriptions
        self._live: dict[str, Callable[[], bool]] = {}

    @property
    def methods(self) -> list[str]:
        return [*self.operations, *self.subscriptions]

    def validate(self, request: Command) -> None:
        """Reject methods the backend variant does not support, before any call."""
        if request.method not in self.operations and request.method not in self.subscriptions:
            raise ConfigurationError(
                f"Unknown {self.backend.kind} method '{request.method}'. "
                f"Supported: {', '.join(self.methods)}"
            )

    def is_long_lived(self, request: Command) -> bool:
        return request.method in self.subscriptions

    def unsubscribe(self, request_id: str) -> bool:
        """Stop a live subscription. Returns False if none is live."""
        release = self._live.pop(request_id, None)
        return release() if release is not None else False

    @property
    def subscription_count(self) -> int:
        return len(self._live)

    # =========================================================================
    # Execution
    # =========================================================================

    async def exchange(self, bindings: RequestBindings) -> None:
        request = bindings.request
        # Revalidate: interceptors may have changed the method
        self.validate(request)
        call = RealtimeCall(
            path=bindings.endpoint,
            data=bindings.data,
            constraints=get_constraints(request.query_params),
        )

        await bindings.on_request_start()
        await bindings.on_request_end()

        if request.method in self.subscriptions:
            await self._subscribe(bindings, self.subscriptions[request.method], call)
            return

        await bindings.on_response_start()
        try:
            data = await self.operations[request.method](self.backend.handle, call)
        except Exception as e:
            logger.debug(f"Realtime {request.method} on {call.path} failed: {e}")
            await bindings.on_error(_to_error(e), RealtimeError.STATUS)
        else:
            await bindings.on_success(data, SUCCESS_STATUS)
        await bindings.on_response_end()

    async def _subscribe(
        self, bindings: RequestBindings, subscription: Subscription, call: RealtimeCall
    ) -> None:
        client = bindings.client
        request_id = bindings.request_id
        state: dict[str, Any] = {"released": False, "unsubscribe": None, "unmount": None}

        def release() -> None:
            if state["released"]:
                return
            state["released"] = True
            self._live.pop(request_id, None)
            if state["unmount"] is not None:
                state["unmount"]()
            if state["unsubscribe"] is not None:
                state["unsubscribe"]()
            logger.debug(f"Subscription {request_id} on {call.path} closed")

        def close() -> bool:
            if not client.release(request_id):
                release()
            return True

        async def on_next(data: Any) -> None:
            if state["released"]:
                return
            if not bindings.settled:
                await bindings.on_response_start()
                await bindings.on_success(data, SUCCESS_STATUS)
                await bindings.on_response_end()
            else:
                await bindings.emit(data, SUCCESS_STATUS)

        async def on_error(error: Exception) -> None:
            if state["released"]:
                return
            if not bindings.settled:
                await bindings.on_error(_to_error(error), RealtimeError.STATUS)
            else:
                await bindings.emit_error(_to_error(error), RealtimeError.STATUS)

        def abort() -> None:
            bindings.on_abort_error()
            close()

        try:
            state["unsubscribe"] = await subscription(self.backend.handle, call, on_next, on_error)
            # Replaces the attempt-level abort listener for this request id
            state["unmount"] = client.abort_manager.register(
                bindings.request.abort_key, request_id, abort
            )
            self._live[request_id] = close
            client.keep_alive(request_id, release)
            envelope = await bindings.result
        except BaseException:
            close()
            raise

        if not envelope.is_success:
            close()


def _to_error(error: Exception) -> RealtimeError:
    if isinstance(error, RealtimeError):
        return error
    return RealtimeError(f"Realtime backend failed: {error}", body=str(error))
