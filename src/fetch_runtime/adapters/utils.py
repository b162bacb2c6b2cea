"""Helpers shared by transport adapters."""

from __future__ import annotations

import json
import time
from collections.abc import Iterator, Mapping
from typing import Any

JSON_CONTENT_TYPE = "application/json"


def encode_payload(data: Any, headers: Mapping[str, str]) -> tuple[bytes | None, dict[str, str]]:
    """Encode request data into bytes, adding a content type where implied.

    - None          -> no body
    - bytes         -> as-is
    - str           -> UTF-8
    - anything else -> JSON (Content-Type: application/json unless set)

    Returns:
        Tuple of (payload, headers)
    """
    headers = dict(headers)
    if data is None:
        return None, headers
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data), headers
    if isinstance(data, str):
        return data.encode("utf-8"), headers

    if not any(name.lower() == "content-type" for name in headers):
        headers["Content-Type"] = JSON_CONTENT_TYPE
    return json.dumps(data).encode("utf-8"), headers


def get_upload_size(payload: bytes | None) -> int:
    """Total upload size in bytes, computed once before the connection opens."""
    return len(payload) if payload else 0


def iter_chunks(payload: bytes, chunk_size: int) -> Iterator[bytes]:
    """Split a payload into chunks of at most ``chunk_size`` bytes."""
    for start in range(0, len(payload), chunk_size):
        yield payload[start : start + chunk_size]


def parse_response(body: bytes | str | None) -> Any:
    """Decode a response body: JSON when it parses, text otherwise."""
    if body is None:
        return ""
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    if not text:
        return ""
    try:
        return json.loads(text)
    except ValueError:
        return text


def parse_error_response(body: bytes | str | None) -> Any:
    """Decode an error body; empty bodies become None."""
    parsed = parse_response(body)
    return parsed if parsed != "" else None


def get_progress_data(
    start_timestamp: float, loaded: int, total: int | None, now: float | None = None
) -> dict[str, Any]:
    """Compute percent progress, estimated seconds left and bytes left.

    Unknown totals yield None for the derived values.
    """
    now = time.monotonic() if now is None else now
    if not total:
        return {"progress": None, "time_left": None, "size_left": None}

    progress = min(loaded / total, 1.0) * 100
    size_left = max(total - loaded, 0)
    elapsed = max(now - start_timestamp, 0.0)
    time_left: float | None = None
    if loaded and elapsed:
        time_left = size_left / (loaded / elapsed)
    elif loaded >= total:
        time_left = 0.0
    return {"progress": progress, "time_left": time_left, "size_left": size_left}
