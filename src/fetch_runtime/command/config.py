"""Command option and dump models.

CommandOptions validates the options accepted by ``create_command`` and
``Command.configure``. CommandDump is the transport-neutral record produced
by ``Command.dump`` and consumed by ``Command.restore``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import ConfigurationError


class CommandOptions(BaseModel):
    """Options a command can be created or reconfigured with.

    Every field is optional; unset fields keep their current value.
    Durations are in seconds.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    endpoint: str | None = None
    method: str | None = None
    headers: dict[str, str] | None = None
    auth: bool | None = None
    cancelable: bool | None = None
    retry: int | None = Field(default=None, ge=0)
    retry_time: float | None = Field(default=None, ge=0)
    garbage_collection: float | None = Field(default=None, ge=0)
    cache: bool | None = None
    cache_time: float | None = Field(default=None, ge=0)
    queued: bool | None = None
    offline: bool | None = None
    disable_response_interceptors: bool | None = None
    disable_request_interceptors: bool | None = None
    options: dict[str, Any] | None = None
    abort_key: str | None = None
    cache_key: str | None = None
    queue_key: str | None = None
    effect_key: str | None = None
    deduplicate: bool | None = None
    deduplicate_time: float | None = Field(default=None, ge=0)

    def overrides(self) -> dict[str, Any]:
        """Only the options that were explicitly set."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


def validate_options(options: dict[str, Any]) -> CommandOptions:
    """Validate option names and types.

    Raises:
        ConfigurationError: On unknown option names or invalid values.
    """
    try:
        return CommandOptions.model_validate(options)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid command options: {e}") from e


class CommandDump(BaseModel):
    """Full configuration plus derived keys of a command."""

    command_options: dict[str, Any] = Field(default_factory=dict)
    endpoint: str
    method: str
    headers: dict[str, str] = Field(default_factory=dict)
    auth: bool
    cancelable: bool
    retry: int
    retry_time: float
    garbage_collection: float
    cache: bool
    cache_time: float
    queued: bool
    offline: bool
    disable_response_interceptors: bool
    disable_request_interceptors: bool
    options: dict[str, Any] = Field(default_factory=dict)
    data: Any = None
    params: dict[str, Any] | None = None
    query_params: dict[str, Any] | str | None = None
    abort_key: str
    cache_key: str
    queue_key: str
    effect_key: str
    used: bool
    updated_abort_key: bool
    updated_cache_key: bool
    updated_queue_key: bool
    updated_effect_key: bool
    deduplicate: bool
    deduplicate_time: float
