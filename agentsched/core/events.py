"""EventBus — in-process observer registry for scheduler/gateway notifications.

Delivery is fire-and-forget: observers never block or break the emitter.
Sync callbacks run inline; coroutine callbacks are scheduled on the running
loop. Observer errors are logged and dropped.
"""

from __future__ import annotations

import asyncio
import inspect
from datetime import datetime
from typing import Any, Callable, Literal

from loguru import logger
from pydantic import BaseModel

TASK_EXECUTION_START = "task_execution_start"
TASK_EXECUTION_COMPLETE = "task_execution_complete"
CONTENT_SIZE_REDUCED = "content_size_reduced"


class TaskExecutionStart(BaseModel):
    type: Literal["task_execution_start"] = TASK_EXECUTION_START
    task_id: str
    task_name: str
    executed_at: datetime


class TaskExecutionComplete(BaseModel):
    type: Literal["task_execution_complete"] = TASK_EXECUTION_COMPLETE
    task_id: str
    task_name: str
    success: bool
    error: str | None = None
    ai_message: str | None = None
    executed_at: datetime


class ContentSizeReduced(BaseModel):
    type: Literal["content_size_reduced"] = CONTENT_SIZE_REDUCED
    reason: str = "max-token-exceeded"
    retry_count: int
    model_id: str = ""


Event = TaskExecutionStart | TaskExecutionComplete | ContentSizeReduced
Callback = Callable[[Any], Any]


class EventBus:
    """Observer registry. ``subscribe("*", cb)`` receives every event."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callback]] = {}
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event_type: str, callback: Callback) -> None:
        self._subscribers.setdefault(event_type, []).append(callback)
        logger.debug(f"Subscribed to '{event_type}': {callback!r}")

    def unsubscribe(self, event_type: str, callback: Callback) -> None:
        callbacks = self._subscribers.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event: Event) -> None:
        """Deliver ``event`` to its type subscribers and wildcard subscribers."""
        callbacks = self._subscribers.get(event.type, []) + self._subscribers.get("*", [])
        if not callbacks:
            logger.debug(f"No subscribers for event: {event.type}")
            return

        for cb in callbacks:
            try:
                result = cb(event)
                if inspect.isawaitable(result):
                    self._schedule(result, event)
            except Exception as e:
                logger.error(f"Event handler failed for {event.type}: {e}")

    async def drain(self) -> None:
        """Wait for scheduled async observers (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, awaitable: Any, event: Event) -> None:
        async def _safe() -> None:
            try:
                await awaitable
            except Exception as e:
                logger.error(f"Async event handler failed for {event.type}: {e}")

        try:
            task = asyncio.get_running_loop().create_task(_safe())
        except RuntimeError:
            # No running loop: drop the coroutine without awaiting it
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning(f"No event loop, async handler skipped for {event.type}")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
