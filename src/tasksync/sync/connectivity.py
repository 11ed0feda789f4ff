# src/tasksync/sync/connectivity.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..core.ports import RemoteAuthority

logger = logging.getLogger(__name__)

OnlineListener = Callable[[], Awaitable[Any]]


class ConnectivityMonitor:
    """
    Boolean "is online" state plus an edge-triggered "became online" event.

    Listeners run as background asyncio tasks so that flipping the state never waits
    for a reconciliation pass.
    """

    def __init__(self, initial: bool = False) -> None:
        self._online = bool(initial)
        self._listeners: list[OnlineListener] = []
        self._background: set[asyncio.Task[Any]] = set()
        self._online_event: asyncio.Event | None = None

    def is_online(self) -> bool:
        return self._online

    def on_online(self, listener: OnlineListener) -> None:
        self._listeners.append(listener)

    def set_online(self, online: bool) -> None:
        online = bool(online)
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity: %s", "online" if online else "offline")

        event = self._online_event
        if event is not None:
            if online:
                event.set()
            else:
                event.clear()

        if online:
            self._fire_listeners()

    def _fire_listeners(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Became online outside an event loop; listeners not run")
            return
        for listener in list(self._listeners):
            task = loop.create_task(listener())
            self._background.add(task)
            task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Online listener failed", exc_info=exc)

    async def wait_online(self) -> None:
        if self._online:
            return
        if self._online_event is None:
            self._online_event = asyncio.Event()
        await self._online_event.wait()

    async def drain_listeners(self) -> None:
        """Wait for listener tasks started so far (used on shutdown and in tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


async def run_connectivity_probe(
        monitor: ConnectivityMonitor,
        remote: RemoteAuthority,
        *,
        interval_seconds: float = 15.0,
) -> None:
    """
    Poll remote.ping() and feed the result into the monitor.

    To stop the probe, cancel the coroutine/task.
    """
    sleep_s = max(0.5, float(interval_seconds))
    while True:
        try:
            reachable = await remote.ping()
        except Exception:
            logger.debug("Connectivity probe failed", exc_info=True)
            reachable = False
        monitor.set_online(reachable)
        await asyncio.sleep(sleep_s)
