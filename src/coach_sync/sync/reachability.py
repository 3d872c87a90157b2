"""Connectivity signal and an HTTP probe that feeds it."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

ReconnectCallback = Callable[[], Any]


class Reachability:
    """Observable boolean: is the remote store reachable?

    Subscribers are called on every false→true edge. Callbacks may be plain
    functions or coroutine functions; coroutines are scheduled as tasks and
    never awaited by ``set_connected``.
    """

    def __init__(self, connected: bool = False) -> None:
        self._connected = connected
        self._callbacks: list[ReconnectCallback] = []
        self._event = asyncio.Event()
        if connected:
            self._event.set()
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def is_connected(self) -> bool:
        return self._connected

    def set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return

        self._connected = connected
        if not connected:
            self._event.clear()
            logger.info("Remote store unreachable")
            return

        self._event.set()
        logger.info("Remote store reachable again")
        for callback in list(self._callbacks):
            try:
                result = callback()
            except Exception as e:
                logger.warning("Reconnect callback failed: %s", e)
                continue
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    def subscribe(self, callback: ReconnectCallback) -> Callable[[], None]:
        """Register a reconnect callback. Returns a function that removes it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def wait_until_connected(self, timeout: float | None = None) -> bool:
        """Block until reachable. Returns False if ``timeout`` elapsed first."""
        if self._connected:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True


class ReachabilityProbe:
    """
    Periodically checks a URL and reports the result to a Reachability.

    Any HTTP answer below 500 counts as reachable; connection errors,
    timeouts and 5xx count as unreachable.

    Usage:
        probe = ReachabilityProbe(reachability, "https://project.example.co/rest/v1/")
        probe.start()
        ...
        await probe.stop()
    """

    def __init__(
        self,
        reachability: Reachability,
        url: str,
        *,
        interval: float = 15.0,
        timeout: float = 5.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._reachability = reachability
        self._url = url
        self._interval = interval
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._headers = dict(headers or {})
        self._session: aiohttp.ClientSession | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_once(self) -> bool:
        """Probe once, update the signal, return the observed state."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

        try:
            async with self._session.head(self._url, headers=self._headers) as response:
                reachable = response.status < 500
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug("Reachability probe failed: %s", e)
            reachable = False

        self._reachability.set_connected(reachable)
        return reachable

    async def _run(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if not self.is_running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._session is not None:
            await self._session.close()
            self._session = None
