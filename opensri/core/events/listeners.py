"""Default event listeners."""

from __future__ import annotations

from dataclasses import asdict

from opensri.core.events.base import BaseEvent, GlobalEventBus, get_global_event_bus
from opensri.utils.logging import get_logger

logger = get_logger("opensri.event_listeners")


def audit_log_listener(event: BaseEvent) -> None:
    """Write every event to the structured audit log."""
    event_data = asdict(event)
    event_data["event_id"] = str(event_data["event_id"])
    event_data["occurred_at"] = event_data["occurred_at"].isoformat()

    logger.info("domain_event", event_type=type(event).__name__, **event_data)


def register_default_listeners(event_bus: GlobalEventBus | None = None) -> None:
    """Attach the audit listener once (lowest priority, runs last)."""
    event_bus = event_bus or get_global_event_bus()
    if not event_bus.is_subscribed(BaseEvent, audit_log_listener):
        event_bus.subscribe(BaseEvent, audit_log_listener, priority=-100)
        logger.info("default_listeners_registered", listeners=["audit_log_listener"])
