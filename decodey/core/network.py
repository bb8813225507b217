"""Online/offline status as reported by the host environment."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class NetworkMonitor:
    def __init__(self, online: bool = True):
        self._online = online
        self._callbacks: list[Callable[[bool], Any]] = []

    @property
    def online(self) -> bool:
        return self._online

    def on_change(self, callback: Callable[[bool], Any]) -> Callable[[], None]:
        """Register a status-change callback; returns the unregister function."""
        self._callbacks.append(callback)

        def unregister() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unregister

    def set_online(self, online: bool) -> list[Any]:
        """
        Record a status change and notify callbacks.

        Returns whatever the callbacks returned (coroutines included) so an
        async host can await them. Repeating the current status is a no-op.
        """
        if online == self._online:
            return []
        self._online = online
        logger.info(f"Network is now {'online' if online else 'offline'}")

        results = []
        for callback in list(self._callbacks):
            try:
                results.append(callback(online))
            except Exception as e:
                logger.error(f"Error in network status callback: {e}")
        return results
