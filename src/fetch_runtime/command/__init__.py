"""Command model: immutable request descriptions and their serialized form."""

from .command import Command, DataMapper, DispatcherType, MockCallback
from .config import CommandDump, CommandOptions, validate_options

__all__ = [
    "Command",
    "CommandDump",
    "CommandOptions",
    "DataMapper",
    "DispatcherType",
    "MockCallback",
    "validate_options",
]
