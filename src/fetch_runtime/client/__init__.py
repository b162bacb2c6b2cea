"""Client and per-attempt request bindings."""

from .bindings import RequestBindings
from .client import Client

__all__ = ["Client", "RequestBindings"]
