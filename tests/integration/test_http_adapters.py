"""Integration tests for the httpx-backed adapters over httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json
from itertools import groupby
from typing import Any

import httpx
import pytest

from fetch_runtime.adapters import BufferedHttpAdapter
from fetch_runtime.client import Client
from fetch_runtime.envelope import ResponseDetails
from fetch_runtime.errors import RequestTimeoutError, TransportError

pytestmark = pytest.mark.integration


def _compress(types: list[str]) -> list[str]:
    """Collapse runs of the same event (progress is emitted per chunk)."""
    return [name for name, _ in groupby(types)]


class TestLifecycleEvents:
    @pytest.mark.asyncio
    async def test_event_order(self, make_http_client):
        async with make_http_client(lambda request: httpx.Response(200, json={"id": 1})) as client:
            received: list[str] = []
            client.bus.subscribe_all(lambda payload: received.append(payload["type"]))

            response = await client.create_command("/users/:id").fetch(params={"id": 1})

        assert response.data == {"id": 1}
        assert _compress(received) == [
            "request.before",
            "request.start",
            "request.progress",
            "request.end",
            "response.start",
            "response.progress",
            "response.success",
            "response.end",
            "response",
            "request.remove",
            "queue.drained",
        ]

    @pytest.mark.asyncio
    async def test_fetch_actions(self, make_http_client):
        async with make_http_client(lambda request: httpx.Response(200, content=b"hello")) as client:
            seen: dict[str, Any] = {"settle": [], "start": [], "download": [], "remove": [], "response": []}

            response = await client.create_command("/greeting").fetch(
                on_settle=lambda request_id, request: seen["settle"].append(request_id),
                on_request_start=lambda props: seen["start"].append(props.request_id),
                on_download_progress=lambda props: seen["download"].append((props.loaded, props.total)),
                on_response=lambda envelope, details: seen["response"].append(envelope),
                on_remove=lambda props: seen["remove"].append(props.request_id),
            )

        request_id = seen["settle"][0]
        assert response.data == "hello"
        assert seen["start"] == [request_id]
        assert seen["remove"] == [request_id]
        assert seen["download"] == [(5, 5)]
        assert seen["response"] == [response]


class TestStatusHandling:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [200, 204, 302, 304])
    async def test_success_statuses(self, make_http_client, status: int):
        headers = {"location": "https://api.test/elsewhere"} if status == 302 else {}
        async with make_http_client(lambda request: httpx.Response(status, headers=headers)) as client:
            response = await client.create_command("/thing").fetch()

        assert response.is_success
        assert response.status == status

    @pytest.mark.asyncio
    async def test_error_status(self, make_http_client):
        handler = lambda request: httpx.Response(404, json={"detail": "missing"})  # noqa: E731
        async with make_http_client(handler) as client:
            response = await client.create_command("/users/:id").fetch(params={"id": 9})

        assert not response.is_success
        assert response.status == 404
        assert isinstance(response.error, TransportError)
        assert response.error.body == {"detail": "missing"}
        assert "https://api.test/users/9" in str(response.error)

    @pytest.mark.asyncio
    async def test_retry_then_error(self, make_http_client):
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(500, json={"error": "boom"})

        details: list[ResponseDetails] = []
        async with make_http_client(handler) as client:
            command = client.create_command("/jobs", retry=2, retry_time=0)
            response = await command.fetch(on_response=lambda envelope, d: details.append(d))

        assert len(calls) == 3
        assert response.status == 500
        assert response.error.body == {"error": "boom"}
        assert details[0].retries == 2

    @pytest.mark.asyncio
    async def test_connection_failure(self, make_http_client):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with make_http_client(handler) as client:
            response = await client.create_command("/users").fetch()

        assert response.status == 0
        assert isinstance(response.error, TransportError)
        assert "connection refused" in str(response.error)

    @pytest.mark.asyncio
    async def test_timeout(self, make_http_client):
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return httpx.Response(200)

        async with make_http_client(handler) as client:
            command = client.create_command("/slow", options={"timeout": 0.05})
            response = await asyncio.wait_for(command.fetch(), timeout=1)

        assert isinstance(response.error, RequestTimeoutError)
        assert response.status == 0

    @pytest.mark.asyncio
    async def test_client_timeout_default(self, make_http_client):
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return httpx.Response(200)

        async with make_http_client(handler, timeout=0.05) as client:
            response = await asyncio.wait_for(client.create_command("/slow").fetch(), timeout=1)

        assert isinstance(response.error, RequestTimeoutError)


class TestUploadProgress:
    @pytest.mark.asyncio
    async def test_streaming_chunks(self, make_http_client):
        received: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["content-length"] == "10"
            received.append(request.content)
            return httpx.Response(201, json={"stored": True})

        progress: list[tuple[int, int | None]] = []
        async with make_http_client(handler, streaming=True, chunk_size=4) as client:
            command = client.create_command("/files", method="PUT")
            response = await command.fetch(
                data=b"0123456789",
                on_upload_progress=lambda props: progress.append((props.loaded, props.total)),
            )

        assert response.status == 201
        assert received == [b"0123456789"]
        assert progress == [(4, 10), (8, 10), (10, 10)]

    @pytest.mark.asyncio
    async def test_streaming_without_body(self, make_http_client):
        async with make_http_client(lambda request: httpx.Response(200, json=[]), streaming=True) as client:
            received: list[str] = []
            client.bus.subscribe_all(lambda payload: received.append(payload["type"]))

            response = await client.create_command("/items").fetch()

        assert response.data == []
        assert received.count("request.start") == 1
        assert received.count("request.end") == 1
        assert "request.progress" not in received

    @pytest.mark.asyncio
    async def test_buffered_single_progress(self, make_http_client):
        progress: list[tuple[int, int | None]] = []
        async with make_http_client(lambda request: httpx.Response(200), chunk_size=4) as client:
            await client.create_command("/files", method="PUT").fetch(
                data=b"0123456789",
                on_upload_progress=lambda props: progress.append((props.loaded, props.total)),
            )

        assert progress == [(10, 10)]

    @pytest.mark.asyncio
    async def test_buffered_upload_reported_before_response(self, make_http_client):
        received: list[str] = []
        seen_by_server: list[list[str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen_by_server.append(list(received))
            return httpx.Response(200)

        async with make_http_client(handler) as client:
            client.bus.subscribe_all(lambda payload: received.append(payload["type"]))
            await client.create_command("/files", method="PUT").fetch(data=b"0123456789")

        assert seen_by_server[0][-3:] == ["request.start", "request.progress", "request.end"]

    @pytest.mark.asyncio
    async def test_json_body(self, make_http_client):
        bodies: list[Any] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["content-type"] == "application/json"
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"id": 7})

        async with make_http_client(handler) as client:
            response = await client.create_command("/users", method="POST").fetch(data={"name": "Ada"})

        assert response.data == {"id": 7}
        assert bodies == [{"name": "Ada"}]

    @pytest.mark.asyncio
    async def test_cookies_come_from_the_http_client(self):
        """Per-request cookies are not forwarded. Cookies live on the httpx client."""
        cookie_headers: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            cookie_headers.append(request.headers.get("cookie"))
            return httpx.Response(200)

        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), cookies={"session": "abc"}
        ) as http_client:
            client = Client("https://api.test", adapter=BufferedHttpAdapter(http_client=http_client))
            await client.create_command("/users", options={"cookies": {"other": "x"}}).fetch()

        assert cookie_headers == ["session=abc"]


class TestInterceptors:
    @pytest.mark.asyncio
    async def test_auth_interceptor(self, make_http_client):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"auth": request.headers.get("authorization")})

        async with make_http_client(handler) as client:
            client.on_auth(lambda request: request.set_headers({**request.headers, "Authorization": "Bearer t"}))

            authed = await client.create_command("/me", cache=False).fetch()
            anonymous = await client.create_command("/me", cache=False, auth=False).fetch()

        assert authed.data == {"auth": "Bearer t"}
        assert anonymous.data == {"auth": None}

    @pytest.mark.asyncio
    async def test_response_interceptors(self, make_http_client):
        async with make_http_client(lambda request: httpx.Response(200, json={"id": 1})) as client:
            seen: list[int] = []

            async def unwrap(envelope, request):
                return envelope.success({"wrapped": envelope.data}, status=envelope.status)

            client.on_success(unwrap)
            client.on_response(lambda envelope, request: seen.append(envelope.status) or envelope)

            response = await client.create_command("/users").fetch()
            raw = await client.create_command("/users", disable_response_interceptors=True, cache=False).fetch()

        assert response.data == {"wrapped": {"id": 1}}
        assert raw.data == {"id": 1}
        assert seen == [200]

    @pytest.mark.asyncio
    async def test_error_interceptor_only_on_errors(self, make_http_client):
        calls: list[int] = []

        def on_error(envelope, request):
            calls.append(envelope.status)
            return envelope

        async with make_http_client(lambda request: httpx.Response(503)) as client:
            client.on_error(on_error)
            await client.create_command("/down").fetch()

        assert calls == [503]
