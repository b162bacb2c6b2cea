"""Integration tests for the realtime adapter: one-shot operations and subscriptions."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from fetch_runtime.client import Client
from fetch_runtime.command import Command
from fetch_runtime.errors import ConfigurationError, RealtimeError
from fetch_runtime.realtime import (
    DocumentStore,
    InMemoryDocumentBackend,
    InMemoryKeyValueBackend,
    KeyValueStore,
    RealtimeAdapter,
    limit,
    order_by,
)

pytestmark = pytest.mark.integration


def _document_client(handle: Any) -> tuple[Client, RealtimeAdapter]:
    adapter = RealtimeAdapter(DocumentStore(handle))
    return Client(adapter=adapter), adapter


class TestOneShotOperations:
    @pytest.mark.asyncio
    async def test_set(self):
        handle = AsyncMock()
        handle.set.return_value = {"id": "u1", "name": "Ada"}
        client, _ = _document_client(handle)

        response = await client.create_command("/users/:id", method="set").fetch(
            params={"id": "u1"}, data={"name": "Ada"}
        )

        handle.set.assert_awaited_once_with("/users/u1", {"name": "Ada"})
        assert response.status == 200
        assert response.data == {"id": "u1", "name": "Ada"}

    @pytest.mark.asyncio
    async def test_query_passes_constraints(self):
        backend = InMemoryDocumentBackend(
            {"/users/u1": {"age": 30}, "/users/u2": {"age": 50}, "/users/u3": {"age": 40}}
        )
        client, _ = _document_client(backend)

        response = await client.create_command("/users", method="query").fetch(
            query_params={"constraints": [order_by("age", "desc"), limit(2)]}
        )

        assert [doc["id"] for doc in response.data] == ["u2", "u3"]

    @pytest.mark.asyncio
    async def test_restored_query_keeps_constraints(self):
        """A query rebuilt from its dump applies the same constraints."""
        backend = InMemoryDocumentBackend(
            {"/users/u1": {"age": 30}, "/users/u2": {"age": 50}, "/users/u3": {"age": 40}}
        )
        client, _ = _document_client(backend)
        command = client.create_command("/users", method="query").set_query_params(
            {"constraints": [order_by("age", "desc"), limit(2)]}
        )

        restored = Command.restore(client, command.dump())
        response = await restored.fetch()

        assert restored.cache_key == command.cache_key
        assert response.status == 200
        assert [doc["id"] for doc in response.data] == ["u2", "u3"]

    @pytest.mark.asyncio
    async def test_unknown_method_fails_before_backend_call(self):
        handle = AsyncMock()
        client, _ = _document_client(handle)

        with pytest.raises(ConfigurationError, match="push"):
            await client.create_command("/users", method="push").fetch()

        assert handle.mock_calls == []

    @pytest.mark.asyncio
    async def test_backend_error(self):
        handle = AsyncMock()
        handle.get.side_effect = RuntimeError("permission denied")
        client, _ = _document_client(handle)

        response = await client.create_command("/users/u1", method="get").fetch()

        assert response.status == 500
        assert isinstance(response.error, RealtimeError)
        assert response.error.body == "permission denied"


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_first_emission_resolves_and_updates_follow(self):
        backend = InMemoryDocumentBackend({"/users/u1": {"name": "Ada"}})
        client, adapter = _document_client(backend)
        request_ids: list[str] = []
        emissions: list[Any] = []

        response = await client.create_command("/users").fetch(
            on_settle=lambda request_id, request: request_ids.append(request_id),
            on_response=lambda envelope, details: emissions.append(envelope.data),
        )

        assert response.data == [{"id": "u1", "name": "Ada"}]
        assert client.is_live(request_ids[0])
        assert adapter.subscription_count == 1

        await backend.set("/users/u2", {"name": "Alan"})

        assert len(emissions) == 2
        assert {doc["id"] for doc in emissions[1]} == {"u1", "u2"}

        assert adapter.unsubscribe(request_ids[0]) is True
        await backend.set("/users/u3", {"name": "Grace"})

        assert len(emissions) == 2
        assert backend.listener_count == 0
        assert not client.is_live(request_ids[0])
        assert adapter.unsubscribe(request_ids[0]) is False

    @pytest.mark.asyncio
    async def test_later_errors_are_emitted(self):
        backend = InMemoryDocumentBackend({"/users/u1": {"name": "Ada"}})
        client, adapter = _document_client(backend)
        errors: list[Any] = []

        await client.create_command("/users").fetch(
            on_response=lambda envelope, details: errors.append(envelope.error) if envelope.error else None,
        )
        await backend.fail("/users", RuntimeError("stream reset"))

        assert len(errors) == 1
        assert isinstance(errors[0], RealtimeError)
        assert adapter.subscription_count == 1

    @pytest.mark.asyncio
    async def test_abort_releases_subscription(self):
        backend = InMemoryDocumentBackend({"/users/u1": {"name": "Ada"}})
        client, adapter = _document_client(backend)
        command = client.create_command("/users")
        await command.fetch()

        assert await client.abort(command.abort_key) == 1

        assert backend.listener_count == 0
        assert adapter.subscription_count == 0

    @pytest.mark.asyncio
    async def test_subscriptions_bypass_cache(self):
        backend = InMemoryDocumentBackend({"/users/u1": {"name": "Ada"}})
        client, adapter = _document_client(backend)
        command = client.create_command("/users")

        await command.fetch()
        await command.fetch()

        assert adapter.subscription_count == 2
        assert client.cache.get(command.cache_key) is None
        await client.aclose()
        assert backend.listener_count == 0

    @pytest.mark.asyncio
    async def test_initial_error_closes_subscription(self):
        unsubscribe = MagicMock()

        async def on_snapshot(path, constraints, on_next, on_error):
            await on_error(RuntimeError("denied"))
            return unsubscribe

        handle = AsyncMock()
        handle.on_snapshot.side_effect = on_snapshot
        client, adapter = _document_client(handle)

        response = await client.create_command("/users").fetch()

        assert response.status == 500
        assert isinstance(response.error, RealtimeError)
        unsubscribe.assert_called_once()
        assert adapter.subscription_count == 0

    @pytest.mark.asyncio
    async def test_key_value_subscription_with_constraints(self):
        backend = InMemoryKeyValueBackend({"scores": {"a": {"points": 3}, "b": {"points": 9}}})
        adapter = RealtimeAdapter(KeyValueStore(backend))
        client = Client(adapter=adapter)
        request_ids: list[str] = []

        response = await client.create_command("/scores").fetch(
            query_params={"constraints": [order_by("points", "desc"), limit(1)]},
            on_settle=lambda request_id, request: request_ids.append(request_id),
        )

        assert response.data == [{"key": "b", "points": 9}]
        assert client.release(request_ids[0]) is True
        assert backend.listener_count == 0
