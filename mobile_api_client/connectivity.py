import asyncio
import logging
from contextlib import suppress
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

import aiohttp

logger = logging.getLogger(__name__)


class ConnectivityState(str, Enum):
    REACHABLE = "REACHABLE"
    UNREACHABLE = "UNREACHABLE"


class ConnectivityMonitor:
    """
    Two-state reachability machine.

    Whatever observes the platform network calls ``update`` on every change.
    Listeners hear every event; reconnect listeners fire only on an
    UNREACHABLE -> REACHABLE transition.
    """

    def __init__(self, reachable: bool = True):
        self._state = ConnectivityState.REACHABLE if reachable else ConnectivityState.UNREACHABLE
        self._listeners: List[Callable[[bool], Any]] = []
        self._reconnect_listeners: List[Callable[[], Any]] = []

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state == ConnectivityState.REACHABLE

    def add_listener(self, listener: Callable[[bool], Any]) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def on_reconnect(self, listener: Callable[[], Any]) -> Callable[[], None]:
        self._reconnect_listeners.append(listener)
        return lambda: self._reconnect_listeners.remove(listener)

    def update(self, reachable: Optional[bool]) -> bool:
        """Feed a reachability event. Returns True if it was a reconnect."""
        # Platforms that cannot tell report None; assume connected
        reachable = True if reachable is None else bool(reachable)
        previous = self._state
        self._state = ConnectivityState.REACHABLE if reachable else ConnectivityState.UNREACHABLE

        if previous != self._state:
            logger.info(f"Connectivity changed: {previous.value} -> {self._state.value}")

        for listener in list(self._listeners):
            listener(reachable)

        reconnected = previous == ConnectivityState.UNREACHABLE and reachable
        if reconnected:
            for listener in list(self._reconnect_listeners):
                listener()
        return reconnected


class HealthCheckObserver:
    """Polls a health endpoint and reports reachability to a monitor."""

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        health_url: str,
        interval: float = 30.0,
        timeout: float = 5.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.monitor = monitor
        self.health_url = health_url
        self.interval = interval
        self.timeout = timeout
        self.sleep = sleep
        self._task: Optional[asyncio.Task] = None

    async def check(self) -> bool:
        """Perform one health check and feed the result to the monitor"""
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.health_url) as response:
                    reachable = response.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Health check against {self.health_url} failed: {e}")
            reachable = False

        self.monitor.update(reachable)
        return reachable

    async def run(self):
        while True:
            await self.check()
            await self.sleep(self.interval)

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.ensure_future(self.run())

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
