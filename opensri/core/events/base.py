"""Event bus infrastructure.

Domain events are immutable dataclasses. Handlers subscribe per event class
(or a base class, to receive every subclass) and run ordered by priority.
A failing handler is logged and skipped; it never aborts the publisher or the
remaining handlers.
"""

from __future__ import annotations

import asyncio
import threading
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID, uuid4

from opensri.utils.datetime import utc_now
from opensri.utils.logging import get_logger

logger = get_logger("opensri.events")


@dataclass(frozen=True)
class BaseEvent:
    """Base class for all domain events.

    Carries ``event_id`` and ``occurred_at`` (UTC) metadata plus an optional
    free-form ``context`` dict.
    """

    event_id: UUID = field(default_factory=uuid4, init=False)
    occurred_at: datetime = field(default_factory=utc_now, init=False)
    context: dict[str, Any] | None = field(default=None, kw_only=True)


class EventBus(Protocol):
    """Publish/subscribe contract used by the pipeline services."""

    def subscribe(
        self,
        event_type: type[BaseEvent],
        handler: Callable[[Any], Any],
        priority: int = 0,
    ) -> None: ...

    def unsubscribe(self, event_type: type[BaseEvent], handler: Callable[[Any], Any]) -> None: ...

    def publish(self, event: BaseEvent) -> None: ...

    async def publish_async(self, event: BaseEvent) -> None: ...


@dataclass
class _HandlerRegistration:
    handler: Callable[[Any], Any]
    priority: int
    is_async: bool

    @property
    def name(self) -> str:
        return getattr(self.handler, "__qualname__", None) or repr(self.handler)


class GlobalEventBus:
    """In-memory event bus with sync and async handlers.

    - Handlers run by descending priority.
    - Subscribing to a base class receives all of its subclasses.
    - One handler failing does not affect the others.
    - Registration is guarded by a lock: retry timers publish from their own
      threads.

    Example:
        >>> bus = GlobalEventBus()
        >>> bus.subscribe(DocumentAuthorizedEvent, on_authorized, priority=10)
        >>> bus.publish(DocumentAuthorizedEvent(document_id=1, ...))
    """

    def __init__(self) -> None:
        self._handlers: dict[type[BaseEvent], list[_HandlerRegistration]] = defaultdict(list)
        self._event_count: dict[str, int] = defaultdict(int)
        self._lock = threading.RLock()

    def subscribe(
        self,
        event_type: type[BaseEvent],
        handler: Callable[[Any], Any],
        priority: int = 0,
    ) -> None:
        """Register ``handler`` for ``event_type``.

        Args:
            event_type: Event class to listen for (subclasses included)
            handler: Sync callable or coroutine function
            priority: Higher runs first. Default: 0
        """
        registration = _HandlerRegistration(
            handler=handler,
            priority=priority,
            is_async=asyncio.iscoroutinefunction(handler),
        )
        with self._lock:
            self._handlers[event_type].append(registration)
            self._handlers[event_type].sort(key=lambda r: r.priority, reverse=True)

        logger.debug(
            "handler_registered",
            event_type=event_type.__name__,
            handler=registration.name,
            priority=priority,
            is_async=registration.is_async,
        )

    def unsubscribe(self, event_type: type[BaseEvent], handler: Callable[[Any], Any]) -> None:
        with self._lock:
            if event_type in self._handlers:
                self._handlers[event_type] = [
                    reg for reg in self._handlers[event_type] if reg.handler != handler
                ]
        logger.debug("handler_unregistered", event_type=event_type.__name__)

    def is_subscribed(self, event_type: type[BaseEvent], handler: Callable[[Any], Any]) -> bool:
        with self._lock:
            return any(reg.handler == handler for reg in self._handlers.get(event_type, []))

    def clear(self) -> None:
        """Drop every registration and counter."""
        with self._lock:
            self._handlers.clear()
            self._event_count.clear()

    def publish(self, event: BaseEvent) -> None:
        """Deliver ``event`` to every matching handler before returning.

        Async handlers are scheduled on the running loop when there is one,
        otherwise they are run to completion on a fresh loop.
        """
        event_name = type(event).__name__
        handlers = self._prepare(event, event_name, "event_published")

        for registration in handlers:
            try:
                if registration.is_async:
                    self._dispatch_coroutine(registration, event)
                else:
                    registration.handler(event)
                logger.debug("handler_executed", event_type=event_name, handler=registration.name)
            except Exception as e:
                # Isolate handler failures
                logger.error(
                    "handler_failed",
                    event_type=event_name,
                    handler=registration.name,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )

    async def publish_async(self, event: BaseEvent) -> None:
        """Deliver ``event`` and await every handler.

        Sync handlers run in a worker thread so they cannot block the loop.
        """
        event_name = type(event).__name__
        handlers = self._prepare(event, event_name, "event_published_async")

        tasks = []
        for registration in handlers:
            if registration.is_async:
                tasks.append(asyncio.create_task(self._run_async_handler(registration, event)))
            else:
                tasks.append(
                    asyncio.create_task(self._run_sync_handler_in_thread(registration, event))
                )

        if tasks:
            await asyncio.gather(*tasks)

    def _prepare(
        self, event: BaseEvent, event_name: str, log_event: str
    ) -> list[_HandlerRegistration]:
        with self._lock:
            self._event_count[event_name] += 1
            handlers = [
                registration
                for event_type, registrations in self._handlers.items()
                if isinstance(event, event_type)
                for registration in registrations
            ]
        handlers.sort(key=lambda r: r.priority, reverse=True)

        logger.info(
            log_event,
            event_type=event_name,
            event_id=str(event.event_id),
            handlers=len(handlers),
        )
        return handlers

    def _dispatch_coroutine(self, registration: _HandlerRegistration, event: BaseEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            asyncio.run(self._run_async_handler(registration, event))
        else:
            loop.create_task(self._run_async_handler(registration, event))

    async def _run_async_handler(
        self, registration: _HandlerRegistration, event: BaseEvent
    ) -> None:
        try:
            await registration.handler(event)
        except Exception as e:
            logger.error(
                "async_handler_failed",
                event_type=type(event).__name__,
                handler=registration.name,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    async def _run_sync_handler_in_thread(
        self, registration: _HandlerRegistration, event: BaseEvent
    ) -> None:
        try:
            await asyncio.to_thread(registration.handler, event)
        except Exception as e:
            logger.error(
                "handler_failed",
                event_type=type(event).__name__,
                handler=registration.name,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    def get_stats(self) -> dict[str, Any]:
        """Handler and publication counters."""
        with self._lock:
            return {
                "total_handlers": sum(len(regs) for regs in self._handlers.values()),
                "event_types": len(self._handlers),
                "events_published": dict(self._event_count),
                "total_events": sum(self._event_count.values()),
            }


_global_event_bus: GlobalEventBus | None = None
_global_lock = threading.Lock()


def get_global_event_bus() -> GlobalEventBus:
    """Return the process-wide bus, creating it on first use."""
    global _global_event_bus
    with _global_lock:
        if _global_event_bus is None:
            _global_event_bus = GlobalEventBus()
            logger.info("global_event_bus_initialized")
        return _global_event_bus


def reset_global_event_bus() -> None:
    """Forget the process-wide bus (tests)."""
    global _global_event_bus
    with _global_lock:
        _global_event_bus = None
