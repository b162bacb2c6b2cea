"""In-memory realtime backends for tests and local use.

Paths are slash-separated. Listeners are notified after every mutation
that touches their path, a child of it, or one of its parents.
"""

from __future__ import annotations

import copy
import inspect
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .backends import Constraint, OnError, OnNext, Unsubscribe, apply_constraints

logger = logging.getLogger(__name__)


def _normalize(path: str) -> str:
    return "/" + path.strip("/")


def _parent(path: str) -> str:
    return _normalize(path.rsplit("/", 1)[0] or "/")


def _related(a: str, b: str) -> bool:
    """True if either path contains the other."""
    return a == b or a.startswith(b.rstrip("/") + "/") or b.startswith(a.rstrip("/") + "/")


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(eq=False)
class _Listener:
    path: str
    constraints: list[Constraint]
    on_next: OnNext
    on_error: OnError


async def _call(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class _ListenerRegistry:
    """Listener bookkeeping shared by both in-memory backends."""

    def __init__(self) -> None:
        self._listeners: list[_Listener] = []

    async def _listen(
        self,
        path: str,
        constraints: list[Constraint],
        on_next: OnNext,
        on_error: OnError,
    ) -> Unsubscribe:
        listener = _Listener(_normalize(path), list(constraints), on_next, on_error)
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        await self._deliver(listener)
        return unsubscribe

    async def _notify(self, path: str) -> None:
        for listener in list(self._listeners):
            if _related(listener.path, path):
                await self._deliver(listener)

    async def _deliver(self, listener: _Listener) -> None:
        try:
            value = self._snapshot(listener.path, listener.constraints)
        except Exception as e:
            await _call(listener.on_error, e)
            return
        await _call(listener.on_next, value)

    def _snapshot(self, path: str, constraints: list[Constraint]) -> Any:
        raise NotImplementedError

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def fail(self, path: str, error: Exception) -> None:
        """Deliver a backend error to every listener related to ``path``."""
        for listener in list(self._listeners):
            if _related(listener.path, _normalize(path)):
                await _call(listener.on_error, error)


class InMemoryDocumentBackend(_ListenerRegistry):
    """Document store: documents live at ``<collection>/<id>``."""

    def __init__(self, documents: dict[str, dict[str, Any]] | None = None) -> None:
        super().__init__()
        self._documents: dict[str, dict[str, Any]] = {}
        for path, data in (documents or {}).items():
            self._documents[_normalize(path)] = dict(data)

    def _document(self, path: str) -> dict[str, Any]:
        return {"id": path.rsplit("/", 1)[-1], **copy.deepcopy(self._documents[path])}

    def _collection(self, path: str) -> list[dict[str, Any]]:
        return [self._document(p) for p in self._documents if _parent(p) == path]

    def _snapshot(self, path: str, constraints: list[Constraint]) -> Any:
        if path in self._documents:
            return self._document(path)
        return apply_constraints(self._collection(path), constraints)

    async def get(self, path: str) -> Any:
        """A document, or the documents of a collection."""
        path = _normalize(path)
        if path in self._documents:
            return self._document(path)
        return self._collection(path)

    async def query(self, path: str, constraints: list[Constraint]) -> list[dict[str, Any]]:
        return apply_constraints(self._collection(_normalize(path)), constraints)

    async def set(self, path: str, data: Any) -> dict[str, Any]:
        path = _normalize(path)
        self._documents[path] = dict(data)
        await self._notify(path)
        return self._document(path)

    async def add(self, path: str, data: Any) -> dict[str, Any]:
        """Create a document with a generated id in the collection."""
        path = f"{_normalize(path).rstrip('/')}/{_new_id()}"
        self._documents[path] = dict(data)
        await self._notify(path)
        return self._document(path)

    async def update(self, path: str, data: Any) -> dict[str, Any]:
        path = _normalize(path)
        if path not in self._documents:
            raise KeyError(f"No document at {path}")
        self._documents[path].update(data)
        await self._notify(path)
        return self._document(path)

    async def remove(self, path: str) -> None:
        path = _normalize(path)
        if self._documents.pop(path, None) is not None:
            await self._notify(path)

    async def on_snapshot(
        self, path: str, constraints: list[Constraint], on_next: OnNext, on_error: OnError
    ) -> Unsubscribe:
        """Emit the current snapshot, then one per related change."""
        return await self._listen(path, constraints, on_next, on_error)


class InMemoryKeyValueBackend(_ListenerRegistry):
    """Key-value tree stored as nested dicts."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        super().__init__()
        self._root: dict[str, Any] = copy.deepcopy(data or {})

    @staticmethod
    def _segments(path: str) -> list[str]:
        return [segment for segment in path.split("/") if segment]

    def _read(self, path: str) -> Any:
        node: Any = self._root
        for segment in self._segments(path):
            if not isinstance(node, dict) or segment not in node:
                return None
            node = node[segment]
        return copy.deepcopy(node)

    def _write(self, path: str, value: Any) -> None:
        segments = self._segments(path)
        if not segments:
            self._root = copy.deepcopy(value) if isinstance(value, dict) else {}
            return
        node = self._root
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                child = node[segment] = {}
            node = child
        if value is None:
            node.pop(segments[-1], None)
        else:
            node[segments[-1]] = copy.deepcopy(value)

    def _snapshot(self, path: str, constraints: list[Constraint]) -> Any:
        value = self._read(path)
        if not constraints or not isinstance(value, dict):
            return value
        records = [
            {"key": key, **child} if isinstance(child, dict) else {"key": key, "value": child}
            for key, child in value.items()
        ]
        return apply_constraints(records, constraints)

    async def get(self, path: str) -> Any:
        return self._read(path)

    async def set(self, path: str, data: Any) -> Any:
        self._write(path, data)
        await self._notify(_normalize(path))
        return self._read(path)

    async def push(self, path: str, data: Any) -> dict[str, Any]:
        """Append a child under a generated key."""
        key = _new_id()
        child = f"{_normalize(path).rstrip('/')}/{key}"
        self._write(child, data)
        await self._notify(child)
        return {"key": key, "value": self._read(child)}

    async def update(self, path: str, data: Any) -> Any:
        current = self._read(path)
        if not isinstance(current, dict):
            current = {}
        current.update(data)
        self._write(path, current)
        await self._notify(_normalize(path))
        return self._read(path)

    async def remove(self, path: str) -> None:
        self._write(path, None)
        await self._notify(_normalize(path))

    async def on_value(
        self, path: str, constraints: list[Constraint], on_next: OnNext, on_error: OnError
    ) -> Unsubscribe:
        """Emit the current value, then one per related change."""
        return await self._listen(path, constraints, on_next, on_error)
