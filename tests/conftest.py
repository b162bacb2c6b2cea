"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from fetch_runtime.adapters import BufferedHttpAdapter, MockAdapter, StreamingHttpAdapter
from fetch_runtime.client import Client
from fetch_runtime.config import ClientConfig

BASE_URL = "https://api.test"


@pytest.fixture
def mock_adapter() -> MockAdapter:
    """Fresh mock adapter with no canned responses."""
    return MockAdapter()


@pytest.fixture
def mock_client(mock_adapter: MockAdapter) -> Client:
    """Client whose primary adapter is the mock adapter."""
    return Client(adapter=mock_adapter)


@pytest.fixture
def make_http_client() -> Callable[..., Client]:
    """Factory for clients talking to an httpx.MockTransport handler."""

    def factory(
        handler: Callable[[httpx.Request], Any],
        *,
        streaming: bool = False,
        chunk_size: int = 64 * 1024,
        **config: Any,
    ) -> Client:
        transport = httpx.MockTransport(handler)
        adapter_cls = StreamingHttpAdapter if streaming else BufferedHttpAdapter
        adapter = adapter_cls(transport=transport, chunk_size=chunk_size)
        return Client(BASE_URL, adapter=adapter, config=ClientConfig(**config))

    return factory
