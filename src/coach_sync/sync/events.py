"""Non-blocking write and sync notifications."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from coach_sync.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class WriteOutcome(StrEnum):
    """How a write left the repository."""

    COMMITTED = "committed"  # confirmed by the remote store
    QUEUED = "queued"  # cached optimistically, replay pending


@dataclass(frozen=True)
class WriteEvent:
    """A write completed, either online or queued for later."""

    entity_kind: str
    entity_id: str
    outcome: WriteOutcome
    operation_id: str | None = None
    at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class SyncCompletedEvent:
    """A reconnect-triggered sync pass finished."""

    owner_id: str | None
    applied: int = 0
    conflicts: int = 0
    dead_lettered: int = 0
    remaining: int = 0
    completed_at: datetime = field(default_factory=utcnow)


EventHandler = Callable[[Any], Any]


class WriteNotifier:
    """Fans events out to subscribers without blocking the publisher.

    Plain handlers run via ``loop.call_soon``; coroutine handlers run as
    tasks. Handler errors are logged, never propagated to the writer.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[EventHandler]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    def subscribe(
        self,
        handler: EventHandler,
        event_type: type = WriteEvent,
    ) -> Callable[[], None]:
        """Register a handler for one event type. Returns an unsubscribe function."""
        self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: WriteEvent | SyncCompletedEvent) -> None:
        handlers = list(self._handlers.get(type(event), []))
        if not handlers:
            return

        loop = asyncio.get_running_loop()
        for handler in handlers:
            if inspect.iscoroutinefunction(handler):
                task = loop.create_task(handler(event))
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)
            else:
                loop.call_soon(self._call_safely, handler, event)

    @staticmethod
    def _call_safely(handler: EventHandler, event: Any) -> None:
        try:
            handler(event)
        except Exception as e:
            logger.warning("Event handler error for %s: %s", type(event).__name__, e)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Async event handler error: %s", task.exception())

    async def wait_idle(self) -> None:
        """Let scheduled handlers run to completion."""
        await asyncio.sleep(0)
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
