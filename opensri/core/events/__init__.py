"""Domain event system for the fiscal pipeline.

Example:
    >>> from opensri.core.events import GlobalEventBus, OrderCompletedEvent
    >>> bus = GlobalEventBus()
    >>> bus.subscribe(OrderCompletedEvent, handler)
    >>> bus.publish(OrderCompletedEvent(order_id=1001))
"""

from __future__ import annotations

__all__ = [
    "BaseEvent",
    "EventBus",
    "GlobalEventBus",
    "get_global_event_bus",
    "reset_global_event_bus",
    "OrderCompletedEvent",
    "DocumentGeneratedEvent",
    "DocumentAuthorizedEvent",
    "DocumentRejectedEvent",
    "DocumentDefinitivelyFailedEvent",
    "audit_log_listener",
    "register_default_listeners",
]

from .base import (
    BaseEvent,
    EventBus,
    GlobalEventBus,
    get_global_event_bus,
    reset_global_event_bus,
)
from .document_events import (
    DocumentAuthorizedEvent,
    DocumentDefinitivelyFailedEvent,
    DocumentGeneratedEvent,
    DocumentRejectedEvent,
)
from .listeners import audit_log_listener, register_default_listeners
from .order_events import OrderCompletedEvent
