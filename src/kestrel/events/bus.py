"""Event bus for Kestrel.

In-process pub/sub for decoupling the orchestrator from its observers.
``EventBus.emit`` has the event-sink signature, so a bus can be passed
straight to ``Orchestrator(on_event=bus.emit)``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from kestrel.events.types import ExecutorEvent

logger = logging.getLogger(__name__)

# Callback type: sync or async function that takes an ExecutorEvent
EventHandler = Callable[[ExecutorEvent], Any]


class EventBus:
    """In-process event bus.

    Supports:
    - subscribe(kind, handler) for kind-specific listening
    - subscribe_all(handler) for global listening (display, logging)
    - emit(event) dispatches to all matching handlers
    """

    def __init__(self, max_history: int = 1000) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._global_handlers: list[EventHandler] = []
        self._history: list[ExecutorEvent] = []
        self._max_history = max_history
        self._pending_tasks: set[asyncio.Task[Any]] = set()

    def subscribe(self, kind: str, handler: EventHandler) -> None:
        self._handlers[kind].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        self._global_handlers.append(handler)

    def unsubscribe(self, kind: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(kind, [])
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    def emit(self, event: ExecutorEvent) -> None:
        """Emit an event to all matching handlers.

        Async handlers are scheduled as fire-and-forget tasks on the
        running loop; handler failures are logged and never propagate.
        """
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        handlers = list(self._global_handlers) + list(self._handlers.get(event.kind, []))
        for handler in handlers:
            if inspect.iscoroutinefunction(handler):
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError:
                    logger.debug(
                        "Skipped async handler %s: no running event loop",
                        getattr(handler, "__name__", handler),
                    )
                    continue
                task = loop.create_task(handler(event))
                self._pending_tasks.add(task)
                task.add_done_callback(self._on_task_done)
                continue
            try:
                handler(event)
            except Exception as e:
                logger.warning(
                    "Event handler %s failed for %s: %s",
                    getattr(handler, "__name__", handler), event.kind, e,
                )

    def recent_events(self, limit: int = 50) -> list[ExecutorEvent]:
        return self._history[-limit:]

    def clear(self) -> None:
        self._handlers.clear()
        self._global_handlers.clear()
        self._history.clear()
        for task in list(self._pending_tasks):
            task.cancel()
        self._pending_tasks.clear()

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight async handler tasks to complete."""
        pending = list(self._pending_tasks)
        if not pending:
            return
        try:
            await asyncio.wait_for(
                asyncio.gather(*pending, return_exceptions=True),
                timeout=timeout,
            )
        except TimeoutError:
            logger.warning(
                "Timed out draining %d pending event handler task(s).",
                len(self._pending_tasks),
            )

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Async event handler failed: %s", exc)
