"""Transport executors.

- BufferedHttpAdapter: whole-body upload, one upload progress event
- StreamingHttpAdapter: chunked upload with cumulative progress
- MockAdapter: canned responses for tests
"""

from .base import Adapter, BaseAdapter, BaseHttpAdapter
from .buffered import BufferedHttpAdapter
from .mock import MockAdapter, MockResponse
from .streaming import StreamingHttpAdapter

__all__ = [
    "Adapter",
    "BaseAdapter",
    "BaseHttpAdapter",
    "BufferedHttpAdapter",
    "MockAdapter",
    "MockResponse",
    "StreamingHttpAdapter",
]
