"""Process-wide side channels owned by a client.

AbortManager: executors register terminate callbacks per (abort key, request id).
AppManager: tracks connectivity and announces online/offline transitions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .bus import EventBus
from .events import AppOffline, AppOnline, AppProps

logger = logging.getLogger(__name__)


class AbortManager:
    """Registry of abort callbacks for in-flight transport attempts."""

    def __init__(self) -> None:
        self._listeners: dict[str, dict[str, Callable[[], None]]] = {}

    def register(
        self, abort_key: str, request_id: str, callback: Callable[[], None]
    ) -> Callable[[], None]:
        """Register a callback fired when the abort key or request id is aborted.

        Returns:
            Unmount function removing the registration
        """
        self._listeners.setdefault(abort_key, {})[request_id] = callback

        def unmount() -> None:
            listeners = self._listeners.get(abort_key)
            if listeners is not None and listeners.get(request_id) is callback:
                del listeners[request_id]
                if not listeners:
                    del self._listeners[abort_key]

        return unmount

    def abort_by_key(self, abort_key: str) -> int:
        """Fire every callback registered under the abort key.

        Returns:
            Number of callbacks fired
        """
        listeners = self._listeners.pop(abort_key, {})
        for request_id, callback in listeners.items():
            logger.debug(f"Aborting {request_id} (abort key {abort_key})")
            callback()
        return len(listeners)

    def abort_by_request_id(self, request_id: str) -> bool:
        """Fire the callback registered for one request id."""
        for abort_key, listeners in list(self._listeners.items()):
            callback = listeners.pop(request_id, None)
            if callback is not None:
                if not listeners:
                    del self._listeners[abort_key]
                callback()
                return True
        return False

    def has_listeners(self, abort_key: str) -> bool:
        return bool(self._listeners.get(abort_key))


class AppManager:
    """Connectivity state. Dispatchers replay offline work when it comes back."""

    def __init__(self, bus: EventBus, is_online: bool = True) -> None:
        self._bus = bus
        self._is_online = is_online

    @property
    def is_online(self) -> bool:
        return self._is_online

    async def set_online(self, is_online: bool) -> None:
        """Change connectivity and publish the transition (no-op if unchanged)."""
        if is_online == self._is_online:
            return
        self._is_online = is_online
        logger.info(f"Connectivity changed: {'online' if is_online else 'offline'}")
        event = AppOnline if is_online else AppOffline
        await self._bus.publish(event, AppProps(is_online=is_online))
