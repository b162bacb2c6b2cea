"""fetch-runtime CLI.

Usage:
    fetch-runtime request /users/:id --base-url https://api.example.com --param id=1
    fetch-runtime request /users --method POST --data '{"name": "Ada"}'
    fetch-runtime request /files --method PUT --data @upload.bin --streaming --progress
    fetch-runtime keys /users/:id --param id=1 --query page=2

The request command prints the final envelope as JSON and exits 1 when it
carries an error.
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any

import click

from .adapters import BufferedHttpAdapter, StreamingHttpAdapter
from .client import Client
from .config import ClientConfig, configure_logging
from .envelope import ResponseEnvelope
from .errors import ConfigurationError, TransportError
from .events import ProgressProps
from .keys import get_abort_key, get_cache_key, get_effect_key, get_queue_key


def parse_pairs(values: tuple[str, ...], option: str) -> dict[str, str]:
    """Parse repeated ``key=value`` options."""
    pairs: dict[str, str] = {}
    for value in values:
        key, sep, item = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got '{value}'", param_hint=option)
        pairs[key] = item
    return pairs


def parse_data(data: str | None) -> Any:
    """JSON text, ``@file`` for raw bytes, or plain text."""
    if data is None:
        return None
    if data.startswith("@"):
        with open(data[1:], "rb") as f:
            return f.read()
    try:
        return json.loads(data)
    except ValueError:
        return data


def envelope_to_dict(envelope: ResponseEnvelope) -> dict[str, Any]:
    error = envelope.error
    return {
        "status": envelope.status,
        "data": envelope.data,
        "error": None
        if error is None
        else {
            "type": type(error).__name__,
            "message": str(error),
            "body": error.body if isinstance(error, TransportError) else None,
        },
    }


@click.group()
@click.version_option(package_name="fetch-runtime")
def main() -> None:
    """fetch-runtime - request lifecycle engine."""


@main.command()
@click.argument("endpoint")
@click.option("--base-url", envvar="FETCH_RUNTIME_BASE_URL", default=None, help="Base URL")
@click.option("--method", "-X", default="GET", show_default=True, help="HTTP method")
@click.option("--param", "-p", "params", multiple=True, help="Route param key=value")
@click.option("--query", "-q", "query", multiple=True, help="Query param key=value")
@click.option("--header", "-H", "headers", multiple=True, help="Header key=value")
@click.option("--data", "-d", default=None, help="JSON body, @file, or text")
@click.option("--retry", default=0, show_default=True, type=click.IntRange(min=0))
@click.option("--retry-time", default=None, type=float, help="Seconds between retries")
@click.option("--timeout", default=None, type=float, help="Timeout in seconds")
@click.option("--streaming", is_flag=True, help="Chunked upload with progress")
@click.option("--progress", is_flag=True, help="Print progress to stderr")
@click.option("--log-level", default=None, help="Logging level (e.g., DEBUG)")
@click.pass_context
def request(
    ctx: click.Context,
    endpoint: str,
    base_url: str | None,
    method: str,
    params: tuple[str, ...],
    query: tuple[str, ...],
    headers: tuple[str, ...],
    data: str | None,
    retry: int,
    retry_time: float | None,
    timeout: float | None,
    streaming: bool,
    progress: bool,
    log_level: str | None,
) -> None:
    """Execute one request and print its envelope."""
    config = ClientConfig.from_env(
        base_url=base_url, timeout=timeout, log_level=log_level, streaming=streaming or None
    )
    configure_logging(config.log_level)

    options: dict[str, Any] = {
        "method": method.upper(),
        "headers": parse_pairs(headers, "--header"),
        "retry": retry,
    }
    if retry_time is not None:
        options["retry_time"] = retry_time

    transport = (ctx.obj or {}).get("transport")
    try:
        envelope = asyncio.run(
            _execute(
                config,
                endpoint,
                options,
                params=parse_pairs(params, "--param"),
                query_params=parse_pairs(query, "--query"),
                data=parse_data(data),
                progress=progress,
                transport=transport,
            )
        )
    except ConfigurationError as e:
        raise click.UsageError(str(e)) from e

    click.echo(json.dumps(envelope_to_dict(envelope), indent=2, default=str))
    if not envelope.is_success:
        sys.exit(1)


async def _execute(
    config: ClientConfig,
    endpoint: str,
    options: dict[str, Any],
    params: dict[str, str],
    query_params: dict[str, str],
    data: Any,
    progress: bool,
    transport: Any = None,
) -> ResponseEnvelope:
    adapter_cls = StreamingHttpAdapter if config.streaming else BufferedHttpAdapter
    adapter = adapter_cls(transport=transport, chunk_size=config.chunk_size)

    def report(label: str) -> Any:
        def on_progress(props: ProgressProps) -> None:
            percent = f"{props.progress:.0f}%" if props.progress is not None else "?"
            click.echo(f"{label} {props.loaded}/{props.total or '?'} bytes ({percent})", err=True)

        return on_progress if progress else None

    async with Client(adapter=adapter, config=config) as client:
        command = client.create_command(endpoint, **options)
        return await command.fetch(
            params=params or None,
            query_params=query_params or None,
            data=data,
            on_upload_progress=report("upload"),
            on_download_progress=report("download"),
        )


@main.command()
@click.argument("endpoint")
@click.option("--method", "-X", default="GET", show_default=True, help="HTTP method")
@click.option("--param", "-p", "params", multiple=True, help="Route param key=value")
@click.option("--query", "-q", "query", multiple=True, help="Query param key=value")
def keys(endpoint: str, method: str, params: tuple[str, ...], query: tuple[str, ...]) -> None:
    """Print the derived key set for an endpoint."""
    route_params = parse_pairs(params, "--param") or None
    query_params = parse_pairs(query, "--query") or None
    result = {
        "abort_key": get_abort_key(endpoint, method, route_params, query_params),
        "cache_key": get_cache_key(endpoint, method, route_params, query_params),
        "queue_key": get_queue_key(endpoint, method, route_params, query_params),
        "effect_key": get_effect_key(endpoint, method),
    }
    click.echo(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
