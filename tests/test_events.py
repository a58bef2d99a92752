"""
Tests for the event dispatcher and the built-in listeners.
"""

import threading
import pytest
from datetime import date

from conftest import ALICE
from smart_input.events import (
    DomainEvent,
    EventDispatcher,
    SavingsGoalCompleted,
    TransactionCreated,
)
from smart_input.models import Money, SavingsGoal, Transaction, TransactionType
from smart_input.models.audit import AuditEventType


def make_transaction(transaction_id: int = 1) -> Transaction:
    return Transaction(
        id=transaction_id,
        user_id=ALICE,
        account_id=1,
        amount=Money(amount=1500, currency="USD"),
        type=TransactionType.EXPENSE,
        occurred_at=date(2026, 3, 15),
        description="Lunch",
    )


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)


class TestDomainEvents:
    """Tests for event payloads."""

    def test_event_has_identity_and_name(self):
        """Test that every event gets an id, a timestamp and its class name."""
        event = TransactionCreated(transaction=make_transaction())
        assert event.event_id is not None
        assert event.occurred_at is not None
        assert event.name == "TransactionCreated"

    def test_events_are_immutable(self):
        """Test that a published payload cannot be altered."""
        event = TransactionCreated(transaction=make_transaction())
        with pytest.raises(Exception):
            event.correlation_id = None


class TestInlineDispatcher:
    """Tests for delivery on the publishing thread."""

    def test_publish_reaches_subscribers(self):
        """Test that each subscriber of the type gets the event."""
        dispatcher = EventDispatcher(max_workers=0)
        first, second = Recorder(), Recorder()
        dispatcher.subscribe(TransactionCreated, first)
        dispatcher.subscribe(TransactionCreated, second)

        event = TransactionCreated(transaction=make_transaction())
        dispatcher.publish(event)

        assert dispatcher.is_inline
        assert first.events == [event]
        assert second.events == [event]

    def test_other_event_types_not_delivered(self):
        """Test that subscribers only see their own event type."""
        dispatcher = EventDispatcher(max_workers=0)
        recorder = Recorder()
        dispatcher.subscribe(SavingsGoalCompleted, recorder)
        dispatcher.publish(TransactionCreated(transaction=make_transaction()))
        assert recorder.events == []

    def test_base_class_subscription(self):
        """Test that subscribing to DomainEvent receives every event."""
        dispatcher = EventDispatcher(max_workers=0)
        recorder = Recorder()
        dispatcher.subscribe(DomainEvent, recorder)
        dispatcher.publish(TransactionCreated(transaction=make_transaction()))
        assert len(recorder.events) == 1

    def test_unsubscribe(self):
        """Test that an unsubscribed listener is no longer called."""
        dispatcher = EventDispatcher(max_workers=0)
        recorder = Recorder()
        dispatcher.subscribe(TransactionCreated, recorder)
        dispatcher.unsubscribe(TransactionCreated, recorder)
        dispatcher.publish(TransactionCreated(transaction=make_transaction()))
        assert recorder.events == []

    def test_failing_listener_is_isolated(self, audit_logger, audit_storage):
        """Test that one listener raising neither reaches the publisher nor stops others."""
        dispatcher = EventDispatcher(max_workers=0, audit_logger=audit_logger)
        recorder = Recorder()

        def broken(event):
            raise RuntimeError("listener bug")

        dispatcher.subscribe(TransactionCreated, broken)
        dispatcher.subscribe(TransactionCreated, recorder)
        dispatcher.publish(TransactionCreated(transaction=make_transaction()))

        assert len(recorder.events) == 1
        failures = [
            event for event in audit_storage.get_recent_events()
            if event.event_type == AuditEventType.LISTENER_FAILED
        ]
        assert len(failures) == 1
        assert failures[0].error_message == "listener bug"
        assert failures[0].details["event"] == "TransactionCreated"

    def test_publish_after_close(self):
        """Test that a closed dispatcher refuses new events."""
        dispatcher = EventDispatcher(max_workers=0)
        dispatcher.close()
        with pytest.raises(RuntimeError):
            dispatcher.publish(TransactionCreated(transaction=make_transaction()))


class TestThreadedDispatcher:
    """Tests for delivery on the worker pool."""

    def test_publish_does_not_wait_for_listeners(self):
        """Test that publish returns while a listener is still blocked."""
        dispatcher = EventDispatcher(max_workers=2)
        release = threading.Event()
        finished = threading.Event()

        def slow(event):
            release.wait(timeout=5)
            finished.set()

        dispatcher.subscribe(TransactionCreated, slow)
        dispatcher.publish(TransactionCreated(transaction=make_transaction()))
        assert not finished.is_set()

        release.set()
        dispatcher.flush(timeout=5)
        assert finished.is_set()
        dispatcher.close()

    def test_flush_waits_for_all_deliveries(self):
        """Test that flush returns once every event was handled."""
        dispatcher = EventDispatcher(max_workers=2)
        recorder = Recorder()
        lock = threading.Lock()

        def record(event):
            with lock:
                recorder(event)

        dispatcher.subscribe(TransactionCreated, record)
        for transaction_id in range(10):
            dispatcher.publish(TransactionCreated(transaction=make_transaction(transaction_id + 1)))
        dispatcher.flush(timeout=5)

        assert len(recorder.events) == 10
        dispatcher.close()

    def test_failing_listener_on_worker_thread(self):
        """Test that worker-thread failures don't surface in flush or close."""
        dispatcher = EventDispatcher(max_workers=1)
        dispatcher.subscribe(TransactionCreated, lambda event: 1 / 0)
        dispatcher.publish(TransactionCreated(transaction=make_transaction()))
        dispatcher.flush(timeout=5)
        dispatcher.close()

    def test_close_is_idempotent(self):
        """Test that close can be called twice."""
        dispatcher = EventDispatcher(max_workers=1)
        dispatcher.close()
        dispatcher.close()

    def test_publish_after_close(self):
        """Test that a closed pool refuses new events with RuntimeError."""
        dispatcher = EventDispatcher(max_workers=1)
        dispatcher.subscribe(TransactionCreated, Recorder())
        dispatcher.close()
        with pytest.raises(RuntimeError, match="closed"):
            dispatcher.publish(TransactionCreated(transaction=make_transaction()))

    def test_publish_racing_close(self):
        """Test that every publish during close is either delivered or refused cleanly."""
        dispatcher = EventDispatcher(max_workers=2)
        delivered = []
        accepted = []
        unexpected = []
        dispatcher.subscribe(TransactionCreated, lambda event: delivered.append(event.transaction.id))
        start = threading.Event()

        def publisher(offset):
            start.wait(timeout=5)
            for n in range(50):
                transaction_id = offset * 1000 + n + 1
                try:
                    dispatcher.publish(TransactionCreated(transaction=make_transaction(transaction_id)))
                except RuntimeError as e:
                    if "closed" not in str(e):
                        unexpected.append(e)
                    return
                except Exception as e:
                    unexpected.append(e)
                    return
                accepted.append(transaction_id)

        threads = [threading.Thread(target=publisher, args=(i,)) for i in range(4)]
        for thread in threads:
            thread.start()
        start.set()
        dispatcher.close()
        for thread in threads:
            thread.join(timeout=5)

        assert unexpected == []
        assert sorted(delivered) == sorted(accepted)


class TestAuditTrailListener:
    """Tests for the built-in audit listener."""

    def test_transaction_created_is_audited(self, wired, audit_storage):
        """Test that a TransactionCreated event becomes an audit record."""
        wired.publish(TransactionCreated(transaction=make_transaction(42)))
        events = audit_storage.get_events_by_entity("transaction", "42")
        assert [event.event_type for event in events] == [AuditEventType.TRANSACTION_CREATED]
        assert events[0].details["amount"] == "$15.00"

    def test_goal_completion_is_audited(self, wired, audit_storage):
        """Test that a SavingsGoalCompleted event becomes an audit record."""
        goal = SavingsGoal(
            id=5, user_id=ALICE, name="Bike", target_amount=20_000,
            current_amount=20_000, currency="USD",
        )
        wired.publish(SavingsGoalCompleted(savings_goal=goal))
        events = audit_storage.get_events_by_entity("savings_goal", "5")
        assert events[0].event_type == AuditEventType.SAVINGS_GOAL_COMPLETED
        assert events[0].details["target"] == "$200.00"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
