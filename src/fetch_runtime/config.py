"""Client configuration.

Values come from constructor arguments or from FETCH_RUNTIME_* environment
variables via ClientConfig.from_env().
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

DEFAULT_TIMEOUT = 30.0
DEFAULT_CHUNK_SIZE = 64 * 1024

ENV_PREFIX = "FETCH_RUNTIME_"


@dataclass
class ClientConfig:
    """Configuration for a Client and its HTTP adapter."""

    base_url: str = ""
    timeout: float = DEFAULT_TIMEOUT

    # Adapter selection: buffered (browser-style) or streaming (server-style)
    streaming: bool = False
    chunk_size: int = DEFAULT_CHUNK_SIZE

    # Command defaults (seconds)
    default_retry_time: float = 0.5
    default_cache_time: float = 300.0
    default_garbage_collection: float = 300.0
    default_deduplicate_time: float = 0.01

    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, **overrides: object) -> ClientConfig:
        """Build config from FETCH_RUNTIME_* environment variables.

        Keyword overrides win over the environment.
        """
        config = cls()
        if base_url := os.getenv(f"{ENV_PREFIX}BASE_URL"):
            config.base_url = base_url
        if timeout := os.getenv(f"{ENV_PREFIX}TIMEOUT"):
            config.timeout = float(timeout)
        if chunk_size := os.getenv(f"{ENV_PREFIX}CHUNK_SIZE"):
            config.chunk_size = int(chunk_size)
        if streaming := os.getenv(f"{ENV_PREFIX}STREAMING"):
            config.streaming = streaming.lower() in ("1", "true", "yes", "on")
        if log_level := os.getenv(f"{ENV_PREFIX}LOG_LEVEL"):
            config.log_level = log_level.upper()

        for name, value in overrides.items():
            if not hasattr(config, name):
                raise TypeError(f"Unknown config option: {name}")
            if value is not None:
                setattr(config, name, value)
        return config


def configure_logging(level: str | int = "WARNING") -> None:
    """Configure root logging for CLI use."""
    logging.basicConfig(
        level=level if isinstance(level, int) else level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
