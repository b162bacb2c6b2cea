"""Streaming HTTP adapter.

Uploads the body in ``chunk_size`` pieces and reports cumulative upload
progress against a total computed once, before the connection opens.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from .base import BaseHttpAdapter
from .utils import get_upload_size, iter_chunks

if TYPE_CHECKING:
    from ..client.bindings import RequestBindings

logger = logging.getLogger(__name__)


class StreamingHttpAdapter(BaseHttpAdapter):
    """Server-style executor over ``httpx.AsyncClient.stream``."""

    async def exchange(self, bindings: RequestBindings) -> None:
        total = get_upload_size(bindings.payload)
        upload = _UploadState()

        options = self.request_options(bindings)
        content: AsyncIterator[bytes] | None = None
        if bindings.payload:
            options["headers"] = {**options["headers"], "Content-Length": str(total)}
            content = self._upload(bindings, bindings.payload, total, upload)
        else:
            await bindings.on_request_start()
            upload.started = True

        logger.debug(f"{bindings.method.upper()} {bindings.full_url} streaming {total} bytes")
        async with self.http_client.stream(
            bindings.method.upper(), bindings.full_url, content=content, **options
        ) as response:
            # Transports that never drain the body still get a closed request phase
            if not upload.started:
                await bindings.on_request_start()
            if not upload.ended:
                await bindings.on_request_end()
                upload.ended = True
            await self.read_response(bindings, response)

    async def _upload(
        self, bindings: RequestBindings, payload: bytes, total: int, state: _UploadState
    ) -> AsyncIterator[bytes]:
        await bindings.on_request_start()
        state.started = True
        sent = 0
        for chunk in iter_chunks(payload, self.chunk_size):
            yield chunk
            sent += len(chunk)
            await bindings.on_request_progress(sent, total)
        await bindings.on_request_end()
        state.ended = True


class _UploadState:
    def __init__(self) -> None:
        self.started = False
        self.ended = False
