"""In-process asynchronous event bus.

Committed workflow writes are announced here; the live view synchronizer and
any other observer subscribe without the workflow engine knowing about them.

Handlers are registered per event class and also receive events of its
subclasses, so a handler subscribed to ``Event`` observes everything. One
failing handler never affects the others or the publisher.
"""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from radlims.core.events.events import Event

EventHandler = Callable[[Event], Awaitable[None]]

logger = structlog.get_logger(__name__)


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class EventBus:
    """Publish/subscribe hub for domain events.

    Designed for a single event loop. Handlers for one event are started in
    subscription order.

    Example:
        >>> bus = EventBus()
        >>> async def on_commit(event: SampleCommittedEvent):
        ...     print(event.sample_id, event.status)
        >>> unsubscribe = bus.subscribe(SampleCommittedEvent, on_commit)
        >>> await bus.publish(committed_event)
        >>> unsubscribe()
    """

    def __init__(self) -> None:
        self._handlers: dict[type[Event], list[EventHandler]] = {}
        self._running_tasks: set[asyncio.Task[None]] = set()

    def subscribe(
        self, event_type: type[Event], handler: EventHandler
    ) -> Callable[[], None]:
        """Register handler for event_type and its subclasses.

        Returns:
            A callable that removes the subscription again
        """
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(
            "handler_subscribed",
            handler=_handler_name(handler),
            event_type=event_type.__name__,
        )
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: type[Event], handler: EventHandler) -> None:
        """Remove a handler. Unknown handlers are ignored."""
        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        remaining = [h for h in handlers if h != handler]
        if remaining:
            self._handlers[event_type] = remaining
        else:
            del self._handlers[event_type]
        logger.debug(
            "handler_unsubscribed",
            handler=_handler_name(handler),
            event_type=event_type.__name__,
        )

    def _handlers_for(self, event: Event) -> list[EventHandler]:
        matched: list[EventHandler] = []
        for event_type in type(event).__mro__:
            matched.extend(self._handlers.get(event_type, ()))
        return matched

    async def publish(self, event: Event) -> None:
        """Start every matching handler and return without waiting for them."""
        handlers = self._handlers_for(event)
        if handlers:
            logger.debug(
                "publishing_event",
                event_type=type(event).__name__,
                handler_count=len(handlers),
            )

        for handler in handlers:
            task = asyncio.create_task(self._safe_invoke(handler, event))
            self._running_tasks.add(task)
            task.add_done_callback(self._running_tasks.discard)

    async def publish_and_wait(self, event: Event) -> list[Exception]:
        """Publish and wait until every handler has finished.

        Returns:
            Exceptions raised by failing handlers (empty if all succeeded)
        """
        handlers = self._handlers_for(event)
        results = await asyncio.gather(
            *(self._safe_invoke(handler, event) for handler in handlers)
        )
        errors = [r for r in results if r is not None]
        if errors:
            logger.warning(
                "handlers_failed",
                failed=len(errors),
                total=len(handlers),
                event_type=type(event).__name__,
            )
        return errors

    async def _safe_invoke(self, handler: EventHandler, event: Event) -> Exception | None:
        try:
            await handler(event)
            return None
        except Exception as e:
            logger.error(
                "event_handler_failed",
                handler=_handler_name(handler),
                event_type=type(event).__name__,
                error=str(e),
                exc_info=True,
            )
            return e

    async def drain(self) -> None:
        """Wait for handlers started by publish() to finish."""
        while self._running_tasks:
            await asyncio.gather(*list(self._running_tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Wait for pending handlers during application shutdown."""
        if self._running_tasks:
            logger.info("waiting_for_handlers", count=len(self._running_tasks))
            await self.drain()
            logger.info("event_handlers_completed")

    def get_handler_count(self, event_type: type[Event]) -> int:
        """Number of handlers registered directly for event_type."""
        return len(self._handlers.get(event_type, []))

    def clear_handlers(self, event_type: type[Event] | None = None) -> None:
        """Clear handlers for one event type, or all of them."""
        if event_type is None:
            self._handlers.clear()
        else:
            self._handlers.pop(event_type, None)


# Process-wide bus used by the application
event_bus = EventBus()
