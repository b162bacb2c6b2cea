"""Buffered HTTP adapter.

Sends the whole body in one write, so upload progress is a single event
covering the full payload. The response is still read incrementally and
reports download progress per received chunk.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .base import BaseHttpAdapter
from .utils import get_upload_size

if TYPE_CHECKING:
    from ..client.bindings import RequestBindings

logger = logging.getLogger(__name__)


class BufferedHttpAdapter(BaseHttpAdapter):
    """Browser-style executor over ``httpx.AsyncClient``."""

    async def exchange(self, bindings: RequestBindings) -> None:
        size = get_upload_size(bindings.payload)
        request = self.http_client.build_request(
            bindings.method.upper(),
            bindings.full_url,
            content=bindings.payload,
            **self._build_options(bindings),
        )

        await bindings.on_request_start()
        logger.debug(f"{request.method} {request.url} ({size} bytes)")
        # Single write: the upload is reported before the response is awaited
        await bindings.on_request_progress(size, size)
        await bindings.on_request_end()
        response = await self.http_client.send(request, stream=True, **self._send_options(bindings))
        try:
            await self.read_response(bindings, response)
        finally:
            await response.aclose()

    def _build_options(self, bindings: RequestBindings) -> dict:
        options = self.request_options(bindings)
        options.pop("follow_redirects", None)
        return options

    def _send_options(self, bindings: RequestBindings) -> dict:
        if "follow_redirects" in bindings.config:
            return {"follow_redirects": bindings.config["follow_redirects"]}
        return {}
