"""Tests for the event bus and default listeners."""

import pytest

from opensri.core.events import (
    BaseEvent,
    DocumentAuthorizedEvent,
    DocumentGeneratedEvent,
    GlobalEventBus,
    OrderCompletedEvent,
    audit_log_listener,
    get_global_event_bus,
    register_default_listeners,
    reset_global_event_bus,
)


@pytest.fixture
def bus() -> GlobalEventBus:
    return GlobalEventBus()


def generated(document_id: int = 1) -> DocumentGeneratedEvent:
    return DocumentGeneratedEvent(
        document_id=document_id, document_number="000000001", kind="INVOICE"
    )


class TestEvents:
    def test_metadata_is_assigned(self):
        event = OrderCompletedEvent(order_id=1001)

        assert event.event_id is not None
        assert event.occurred_at.tzinfo is not None
        assert event.context is None

    def test_events_are_immutable(self):
        event = OrderCompletedEvent(order_id=1001)

        with pytest.raises(AttributeError):
            event.order_id = 1002


class TestGlobalEventBus:
    def test_publish_calls_handler(self, bus):
        received = []
        bus.subscribe(OrderCompletedEvent, received.append)

        bus.publish(OrderCompletedEvent(order_id=1001))

        assert [e.order_id for e in received] == [1001]

    def test_handlers_only_receive_their_event_type(self, bus):
        received = []
        bus.subscribe(OrderCompletedEvent, received.append)

        bus.publish(generated())

        assert received == []

    def test_base_class_subscription_receives_subclasses(self, bus):
        received = []
        bus.subscribe(BaseEvent, received.append)

        bus.publish(OrderCompletedEvent(order_id=1))
        bus.publish(generated())

        assert len(received) == 2

    def test_handlers_run_by_priority(self, bus):
        calls = []
        bus.subscribe(OrderCompletedEvent, lambda e: calls.append("low"), priority=1)
        bus.subscribe(OrderCompletedEvent, lambda e: calls.append("high"), priority=10)
        bus.subscribe(BaseEvent, lambda e: calls.append("audit"), priority=-100)

        bus.publish(OrderCompletedEvent(order_id=1))

        assert calls == ["high", "low", "audit"]

    def test_failing_handler_does_not_stop_others(self, bus):
        calls = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(OrderCompletedEvent, broken, priority=10)
        bus.subscribe(OrderCompletedEvent, lambda e: calls.append(e.order_id))

        bus.publish(OrderCompletedEvent(order_id=7))

        assert calls == [7]

    def test_nested_publish(self, bus):
        received = []

        def issue(event):
            bus.publish(generated(document_id=event.order_id))

        bus.subscribe(OrderCompletedEvent, issue)
        bus.subscribe(DocumentGeneratedEvent, received.append)

        bus.publish(OrderCompletedEvent(order_id=5))

        assert [e.document_id for e in received] == [5]

    def test_unsubscribe(self, bus):
        received = []
        bus.subscribe(OrderCompletedEvent, received.append)
        bus.unsubscribe(OrderCompletedEvent, received.append)

        bus.publish(OrderCompletedEvent(order_id=1))

        assert received == []

    def test_is_subscribed_matches_bound_methods(self, bus):
        class Handler:
            def on_event(self, event):
                pass

        handler = Handler()
        bus.subscribe(OrderCompletedEvent, handler.on_event)

        assert bus.is_subscribed(OrderCompletedEvent, handler.on_event)
        assert not bus.is_subscribed(OrderCompletedEvent, Handler().on_event)
        assert not bus.is_subscribed(DocumentGeneratedEvent, handler.on_event)

    def test_sync_publish_runs_async_handlers(self, bus):
        received = []

        async def handler(event):
            received.append(event.order_id)

        bus.subscribe(OrderCompletedEvent, handler)
        bus.publish(OrderCompletedEvent(order_id=3))

        assert received == [3]

    async def test_publish_async_awaits_all_handlers(self, bus):
        received = []

        async def async_handler(event):
            received.append("async")

        bus.subscribe(OrderCompletedEvent, async_handler)
        bus.subscribe(OrderCompletedEvent, lambda e: received.append("sync"))

        await bus.publish_async(OrderCompletedEvent(order_id=1))

        assert sorted(received) == ["async", "sync"]

    async def test_publish_async_isolates_failures(self, bus):
        received = []

        async def broken(event):
            raise ValueError("boom")

        bus.subscribe(OrderCompletedEvent, broken)
        bus.subscribe(OrderCompletedEvent, lambda e: received.append(e.order_id))

        await bus.publish_async(OrderCompletedEvent(order_id=9))

        assert received == [9]

    def test_stats(self, bus):
        bus.subscribe(OrderCompletedEvent, lambda e: None)
        bus.publish(OrderCompletedEvent(order_id=1))
        bus.publish(OrderCompletedEvent(order_id=2))

        stats = bus.get_stats()

        assert stats["total_handlers"] == 1
        assert stats["events_published"] == {"OrderCompletedEvent": 2}
        assert stats["total_events"] == 2

    def test_clear(self, bus):
        bus.subscribe(OrderCompletedEvent, lambda e: None)
        bus.clear()

        assert bus.get_stats()["total_handlers"] == 0


class TestDefaultListeners:
    def test_registered_once(self, bus):
        register_default_listeners(bus)
        register_default_listeners(bus)

        assert bus.get_stats()["total_handlers"] == 1
        assert bus.is_subscribed(BaseEvent, audit_log_listener)

    def test_audit_listener_serializes_event(self):
        audit_log_listener(
            DocumentAuthorizedEvent(
                document_id=1, document_number="000000001", authorization_number="123"
            )
        )

    def test_global_bus_is_a_singleton(self):
        reset_global_event_bus()
        try:
            assert get_global_event_bus() is get_global_event_bus()
        finally:
            reset_global_event_bus()
