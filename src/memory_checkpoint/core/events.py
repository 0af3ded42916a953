"""In-process event bus for lifecycle and error events."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Set

from ..models.recovery_models import ErrorEvent, ErrorKind

logger = logging.getLogger(__name__)

ERROR_EVENT = "error"

EventHandler = Callable[[Any], Any]


class EventBus:
    """
    Handler registration table keyed by event name.

    Handlers run synchronously in registration order. A handler that
    returns a coroutine is scheduled on the running loop; the bus keeps a
    reference until the task finishes.
    """

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, event: str, handler: EventHandler) -> None:
        """
        Register a handler for an event.

        Args:
            event: Event name
            handler: Callable receiving the event payload
        """
        self._handlers.setdefault(event, []).append(handler)

    def unsubscribe(self, event: str, handler: EventHandler) -> bool:
        """Remove a handler. Returns False if it was not registered."""
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def handler_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    def emit(self, event: str, payload: Any = None) -> None:
        """
        Deliver a payload to every handler of an event.

        Handler failures are logged and do not stop delivery.

        Args:
            event: Event name
            payload: Event payload
        """
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(payload)
            except Exception as e:
                logger.error(f"Handler for '{event}' failed: {e}", exc_info=True)
                continue

            if inspect.iscoroutine(result):
                self._schedule(event, result)

    def emit_error(self, kind: ErrorKind, error: Any, **context: Any) -> ErrorEvent:
        """
        Emit an error event.

        Args:
            kind: Error kind
            error: Exception or message
            **context: checkpoint_id, session_id, agent_id

        Returns:
            The emitted event
        """
        event = ErrorEvent(kind=kind, error=str(error), **context)
        logger.debug(f"Error event {event.kind.value}: {event.error}")
        self.emit(ERROR_EVENT, event)
        return event

    async def drain(self) -> None:
        """Wait for every scheduled handler task to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, event: str, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running loop for async handler of '{event}'")
            coro.close()
            return

        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async event handler failed: {task.exception()}")
