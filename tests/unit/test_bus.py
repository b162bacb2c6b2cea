"""Unit tests for the event bus and event definitions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from fetch_runtime import events
from fetch_runtime.bus import EventBus


def _queue_props(key: str = "GET_/users") -> events.QueueProps:
    return events.QueueProps(queue_key=key)


class TestEventBus:
    """Test publish/subscribe semantics."""

    @pytest.mark.asyncio
    async def test_publish_to_subscriber(self):
        bus = EventBus()
        received: list[dict[str, Any]] = []
        bus.subscribe(events.QueueDrained, received.append)

        await bus.publish(events.QueueDrained, _queue_props())

        assert len(received) == 1
        assert received[0]["type"] == "queue.drained"
        assert received[0]["properties"].queue_key == "GET_/users"

    @pytest.mark.asyncio
    async def test_async_subscriber(self):
        bus = EventBus()
        received: list[str] = []

        async def on_event(payload: dict[str, Any]) -> None:
            await asyncio.sleep(0)
            received.append(payload["type"])

        bus.subscribe(events.QueueDrained, on_event)
        await bus.publish(events.QueueDrained, _queue_props())

        assert received == ["queue.drained"]

    @pytest.mark.asyncio
    async def test_scoped_subscription(self):
        """Scoped subscribers only see events published with their scope."""
        bus = EventBus()
        scoped: list[str] = []
        bus.subscribe(events.QueueDrained, lambda p: scoped.append(p["type"]), scope="req_1")

        await bus.publish(events.QueueDrained, _queue_props(), scopes=["req_2"])
        assert scoped == []

        await bus.publish(events.QueueDrained, _queue_props(), scopes=["req_1"])
        assert scoped == ["queue.drained"]

    @pytest.mark.asyncio
    async def test_duplicate_scopes_deliver_once(self):
        bus = EventBus()
        received: list[str] = []
        bus.subscribe(events.QueueDrained, lambda p: received.append(p["type"]), scope="k")

        await bus.publish(events.QueueDrained, _queue_props(), scopes=["k", "k"])

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_wildcard(self):
        bus = EventBus()
        received: list[str] = []
        bus.subscribe_all(lambda p: received.append(p["type"]))

        await bus.publish(events.QueueDrained, _queue_props())
        await bus.publish(events.AppOnline, events.AppProps(is_online=True))

        assert received == ["queue.drained", "app.online"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        received: list[str] = []
        unsubscribe = bus.subscribe(events.QueueDrained, lambda p: received.append(p["type"]))

        unsubscribe()
        await bus.publish(events.QueueDrained, _queue_props())

        assert received == []
        assert bus.listener_count(events.QueueDrained) == 0

    @pytest.mark.asyncio
    async def test_failing_subscriber_is_isolated(self, caplog: pytest.LogCaptureFixture):
        """A raising subscriber is logged and later subscribers still run."""
        bus = EventBus()
        received: list[str] = []

        def broken(payload: dict[str, Any]) -> None:
            raise RuntimeError("subscriber failure")

        bus.subscribe(events.QueueDrained, broken)
        bus.subscribe(events.QueueDrained, lambda p: received.append(p["type"]))

        with caplog.at_level(logging.ERROR, logger="fetch_runtime.bus"):
            await bus.publish(events.QueueDrained, _queue_props())

        assert received == ["queue.drained"]
        assert "Error in subscriber for queue.drained" in caplog.text

    @pytest.mark.asyncio
    async def test_stream(self):
        bus = EventBus()
        stream = bus.stream()
        next_event = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)

        await bus.publish(events.QueueDrained, _queue_props())
        event = await asyncio.wait_for(next_event, timeout=1)

        assert event["type"] == "queue.drained"
        await stream.aclose()

    def test_reset(self):
        bus = EventBus()
        bus.subscribe(events.QueueDrained, lambda p: None)

        bus.reset()

        assert bus.listener_count(events.QueueDrained) == 0


class TestEventDefinitions:
    """Test the defined event types."""

    def test_event_types(self):
        assert events.RequestStart.type == "request.start"
        assert events.ResponseProgress.schema is events.ProgressProps
        assert events.Response.type == "response"

    def test_request_identity_excludes_request_from_dump(self):
        props = events.RequestEventProps(
            request_id="req_1",
            queue_key="q",
            abort_key="a",
            cache_key="c",
            effect_key="e",
            request=object(),
        )

        assert "request" not in props.model_dump()
