"""Event Bus - pub/sub for request lifecycle events.

Every client owns one bus. Events can be subscribed globally by type,
narrowed to a scope (a request id, queue key, abort key or cache key),
or all at once with the wildcard subscription.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

WILDCARD = "*"


@dataclass(frozen=True)
class EventDefinition(Generic[T]):
    """Typed event definition.

    Usage:
        RequestStart = EventBus.define("request.start", RequestEventProps)
        await bus.publish(RequestStart, RequestEventProps(...), scopes=[request_id])
    """

    type: str
    schema: type[T]


# Callbacks receive {"type": str, "properties": BaseModel}; may be sync or async
EventCallback = Callable[[dict[str, Any]], Awaitable[None] | None]


def _key(event_type: str, scope: str | None) -> str:
    return event_type if scope is None else f"{event_type}::{scope}"


class EventBus:
    """Event bus with scoped and wildcard subscription support.

    Subscribing is synchronous so a caller can attach listeners before
    yielding to the event loop and never miss the first event.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[EventCallback]] = {}

    @staticmethod
    def define(event_type: str, schema: type[T]) -> EventDefinition[T]:
        """Define a typed event.

        Args:
            event_type: Dot-separated event name (e.g., "request.start")
            schema: Pydantic model for event properties

        Returns:
            EventDefinition that can be used with publish/subscribe
        """
        return EventDefinition(type=event_type, schema=schema)

    async def publish(
        self,
        event_def: EventDefinition[T],
        properties: T,
        scopes: Iterable[str | None] = (),
    ) -> None:
        """Publish event to unscoped, scoped and wildcard subscribers.

        Args:
            event_def: The event definition (created via EventBus.define)
            properties: Event properties (must match the schema)
            scopes: Extra scopes this event is delivered to
        """
        payload = {"type": event_def.type, "properties": properties}

        keys = [event_def.type]
        keys.extend(_key(event_def.type, scope) for scope in dict.fromkeys(scopes) if scope)

        # Copy subscriber lists to avoid mutation during iteration
        callbacks: list[EventCallback] = []
        for key in keys:
            callbacks.extend(self._subscriptions.get(key, []))
        callbacks.extend(self._subscriptions.get(WILDCARD, []))

        for callback in callbacks:
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Error in subscriber for {event_def.type}")

    def subscribe(
        self,
        event_def: EventDefinition[T],
        callback: EventCallback,
        scope: str | None = None,
    ) -> Callable[[], None]:
        """Subscribe to an event type, optionally narrowed to one scope.

        Returns:
            Unsubscribe function
        """
        return self._subscribe(_key(event_def.type, scope), callback)

    def subscribe_all(self, callback: EventCallback) -> Callable[[], None]:
        """Subscribe to ALL events.

        Returns:
            Unsubscribe function
        """
        return self._subscribe(WILDCARD, callback)

    def _subscribe(self, key: str, callback: EventCallback) -> Callable[[], None]:
        self._subscriptions.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            if key in self._subscriptions and callback in self._subscriptions[key]:
                self._subscriptions[key].remove(callback)
                if not self._subscriptions[key]:
                    del self._subscriptions[key]

        return unsubscribe

    def listener_count(self, event_def: EventDefinition[Any], scope: str | None = None) -> int:
        """Number of callbacks registered for an event (and scope)."""
        return len(self._subscriptions.get(_key(event_def.type, scope), []))

    async def stream(self) -> AsyncIterator[dict[str, Any]]:
        """Create an async iterator that yields all events.

        Usage:
            async for event in bus.stream():
                print(event["type"])
        """
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

        def on_event(payload: dict[str, Any]) -> None:
            queue.put_nowait(payload)

        unsubscribe = self.subscribe_all(on_event)

        try:
            while True:
                event = await queue.get()
                yield event
        finally:
            unsubscribe()

    def reset(self) -> None:
        """Drop every subscription (for testing)."""
        self._subscriptions = {}
