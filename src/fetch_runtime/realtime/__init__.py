"""Realtime adapter over document and key-value backends."""

from .adapter import RealtimeAdapter, RealtimeCall
from .backends import (
    Constraint,
    DocumentBackend,
    DocumentStore,
    KeyValueBackend,
    KeyValueStore,
    RealtimeBackend,
    apply_constraints,
    limit,
    order_by,
    where,
)
from .memory import InMemoryDocumentBackend, InMemoryKeyValueBackend

__all__ = [
    "Constraint",
    "DocumentBackend",
    "DocumentStore",
    "InMemoryDocumentBackend",
    "InMemoryKeyValueBackend",
    "KeyValueBackend",
    "KeyValueStore",
    "RealtimeAdapter",
    "RealtimeBackend",
    "RealtimeCall",
    "apply_constraints",
    "limit",
    "order_by",
    "where",
]
