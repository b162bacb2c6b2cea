"""Key derivation for commands.

Four identity keys drive dispatch behaviour:
- abort key: requests cancelled together
- cache key: responses considered interchangeable (cache, deduplication)
- queue key: requests executed strictly one after another when queued
- effect key: side-effect correlation across one logical command

All functions here are pure. The same endpoint template, method, params
and query params always produce the same key.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

from .errors import ConfigurationError

ParamType = str | int | float
QueryParamsType = Mapping[str, Any] | str

_ROUTE_PARAM = re.compile(r":([A-Za-z_][A-Za-z0-9_]*)")


def get_route_params(endpoint: str) -> list[str]:
    """Return placeholder names in order of appearance (``/users/:id`` -> ``["id"]``)."""
    return _ROUTE_PARAM.findall(endpoint)


def resolve_endpoint(endpoint: str, params: Mapping[str, ParamType] | None = None) -> str:
    """Substitute ``:name`` placeholders with param values.

    Raises:
        ConfigurationError: If any placeholder has no value.
    """
    params = params or {}
    missing = [name for name in get_route_params(endpoint) if params.get(name) is None]
    if missing:
        raise ConfigurationError(
            f"Missing route params for endpoint '{endpoint}': {', '.join(missing)}"
        )
    return _ROUTE_PARAM.sub(lambda match: str(params[match.group(1)]), endpoint)


def fill_endpoint(endpoint: str, params: Mapping[str, ParamType] | None = None) -> str:
    """Substitute placeholders that have values and leave the rest untouched."""
    if not params:
        return endpoint

    def replace(match: re.Match[str]) -> str:
        value = params.get(match.group(1))
        return match.group(0) if value is None else str(value)

    return _ROUTE_PARAM.sub(replace, endpoint)


def stringify_query_params(query_params: QueryParamsType | None) -> str:
    """Encode query params as ``?a=1&b=2`` (sorted, ``None`` dropped).

    Lists and tuples repeat the key. A string is taken as already encoded.
    """
    if not query_params:
        return ""
    if isinstance(query_params, str):
        return query_params if query_params.startswith("?") else f"?{query_params}"

    pairs: list[tuple[str, Any]] = []
    for name in sorted(query_params):
        value = query_params[name]
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            pairs.extend((name, _encode_value(item)) for item in value if item is not None)
        else:
            pairs.append((name, _encode_value(value)))
    if not pairs:
        return ""
    return f"?{urlencode(pairs)}"


def _encode_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def derive_key(
    endpoint: str,
    method: str,
    params: Mapping[str, ParamType] | None = None,
    query_params: QueryParamsType | None = None,
) -> str:
    """Derive a dispatch key from the endpoint template, method and params.

    Placeholders without a value stay in the key as-is; required params are
    validated when a request is materialized.
    """
    resolved = fill_endpoint(endpoint, params)
    return f"{method.upper()}_{resolved}{stringify_query_params(query_params)}"


def get_abort_key(
    endpoint: str,
    method: str,
    params: Mapping[str, ParamType] | None = None,
    query_params: QueryParamsType | None = None,
) -> str:
    return derive_key(endpoint, method, params, query_params)


def get_cache_key(
    endpoint: str,
    method: str,
    params: Mapping[str, ParamType] | None = None,
    query_params: QueryParamsType | None = None,
) -> str:
    return derive_key(endpoint, method, params, query_params)


def get_queue_key(
    endpoint: str,
    method: str,
    params: Mapping[str, ParamType] | None = None,
    query_params: QueryParamsType | None = None,
) -> str:
    return derive_key(endpoint, method, params, query_params)


def get_effect_key(endpoint: str, method: str) -> str:
    """Effect keys ignore params so every call of one command correlates."""
    return derive_key(endpoint, method)
