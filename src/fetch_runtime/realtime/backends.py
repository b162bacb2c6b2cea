"""Realtime backend handles and query constraints.

A realtime adapter wraps exactly one backend variant:

- DocumentStore(handle):  collections of documents (get, query, set, add,
                          update, remove, on_snapshot)
- KeyValueStore(handle):  a tree of values addressed by path (get, set,
                          push, update, remove, on_value)

Handles are opaque: anything implementing the matching protocol works.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Literal, Protocol, runtime_checkable

# Listener callbacks may be sync or async
OnNext = Callable[[Any], Awaitable[None] | None]
OnError = Callable[[Exception], Awaitable[None] | None]
Unsubscribe = Callable[[], None]


# =============================================================================
# Constraints
# =============================================================================

ConstraintKind = Literal["where", "order_by", "limit"]

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a is not None and a < b,
    "<=": lambda a, b: a is not None and a <= b,
    ">": lambda a, b: a is not None and a > b,
    ">=": lambda a, b: a is not None and a >= b,
    "in": lambda a, b: a in b,
    "array-contains": lambda a, b: isinstance(a, list) and b in a,
}


@dataclass(frozen=True)
class Constraint:
    """One query constraint, passed as ``query_params={"constraints": [...]}``."""

    kind: ConstraintKind
    field: str | None = None
    op: str | None = None
    value: Any = None

    def __str__(self) -> str:
        if self.kind == "where":
            return f"where:{self.field}{self.op}{self.value}"
        if self.kind == "order_by":
            return f"order_by:{self.field}:{self.value}"
        return f"limit:{self.value}"


def where(field: str, op: str, value: Any) -> Constraint:
    if op not in _OPERATORS:
        raise ValueError(f"Unknown operator: {op}")
    return Constraint("where", field, op, value)


def order_by(field: str, direction: Literal["asc", "desc"] = "asc") -> Constraint:
    return Constraint("order_by", field, None, direction)


def limit(count: int) -> Constraint:
    return Constraint("limit", None, None, count)


def apply_constraints(
    items: Iterable[dict[str, Any]], constraints: Iterable[Constraint]
) -> list[dict[str, Any]]:
    """Filter, sort and limit records. Constraints apply in the order given."""
    result = list(items)
    for constraint in constraints:
        name = constraint.field or ""
        if constraint.kind == "where":
            compare = _OPERATORS[constraint.op or "=="]
            result = [item for item in result if compare(item.get(name), constraint.value)]
        elif constraint.kind == "order_by":
            # Missing values sort last
            result.sort(
                key=lambda item: (item.get(name) is None, item.get(name)),
                reverse=constraint.value == "desc",
            )
        elif constraint.kind == "limit":
            result = result[: int(constraint.value)]
    return result


# =============================================================================
# Backend protocols
# =============================================================================


@runtime_checkable
class DocumentBackend(Protocol):
    """Document database handle."""

    async def get(self, path: str) -> Any: ...

    async def query(self, path: str, constraints: list[Constraint]) -> list[dict[str, Any]]: ...

    async def set(self, path: str, data: Any) -> Any: ...

    async def add(self, path: str, data: Any) -> Any: ...

    async def update(self, path: str, data: Any) -> Any: ...

    async def remove(self, path: str) -> Any: ...

    async def on_snapshot(
        self, path: str, constraints: list[Constraint], on_next: OnNext, on_error: OnError
    ) -> Unsubscribe: ...


@runtime_checkable
class KeyValueBackend(Protocol):
    """Key-value tree handle."""

    async def get(self, path: str) -> Any: ...

    async def set(self, path: str, data: Any) -> Any: ...

    async def push(self, path: str, data: Any) -> Any: ...

    async def update(self, path: str, data: Any) -> Any: ...

    async def remove(self, path: str) -> Any: ...

    async def on_value(
        self, path: str, constraints: list[Constraint], on_next: OnNext, on_error: OnError
    ) -> Unsubscribe: ...


# =============================================================================
# Tagged backend variants
# =============================================================================


@dataclass(frozen=True)
class DocumentStore:
    handle: DocumentBackend
    kind: Literal["document"] = "document"


@dataclass(frozen=True)
class KeyValueStore:
    handle: KeyValueBackend
    kind: Literal["key_value"] = "key_value"


RealtimeBackend = DocumentStore | KeyValueStore
