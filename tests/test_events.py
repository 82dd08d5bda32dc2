"""
Tests for vault event publishing
"""

import pytest
from datetime import datetime
from unittest.mock import Mock

from custody_vault.audit import AuditTrail, AuditEventType
from custody_vault.events import DomainEvent, EventPayload, EventDispatcher
from custody_vault.storage import InMemoryStorage


class TestEventPayload:
    """Test EventPayload creation and serialization"""

    def test_from_audit_record(self):
        """Test a payload carries the figures of its audit record"""
        record = AuditTrail(InMemoryStorage()).log_event(
            AuditEventType.DEPOSITED, "v1", "alice", 50, 50, 70
        )

        event = EventPayload.from_audit(DomainEvent.DEPOSITED, record)

        assert event.event_type == DomainEvent.DEPOSITED
        assert (event.vault_id, event.account) == ("v1", "alice")
        assert (event.amount, event.new_balance, event.total_custodied) == (50, 50, 70)
        assert event.audit_event_id == record.id
        assert isinstance(event.timestamp, datetime)
        assert event.event_id

    def test_payload_is_immutable(self):
        event = EventPayload(DomainEvent.WITHDRAWN, "v1", "bob", 5, 0, 0)

        with pytest.raises(AttributeError):
            event.amount = 6

    def test_to_dict(self):
        """Test serialized payloads use plain values"""
        event = EventPayload(DomainEvent.WITHDRAWN, "v1", "bob", 2 ** 90, 0, 0)

        data = event.to_dict()

        assert data["event_type"] == "vault.withdrawn"
        assert data["amount"] == 2 ** 90
        assert data["timestamp"] == event.timestamp.isoformat()
        assert data["audit_event_id"] is None


class TestEventDispatcher:
    """Test EventDispatcher functionality"""

    def setup_method(self):
        """Set up test fixtures"""
        self.dispatcher = EventDispatcher()
        self.event = EventPayload(DomainEvent.DEPOSITED, "v1", "alice", 10, 10, 10)

    def test_subscribe_and_publish(self):
        """Test handlers receive events of their type only"""
        deposit_handler = Mock()
        withdraw_handler = Mock()
        self.dispatcher.subscribe(DomainEvent.DEPOSITED, deposit_handler)
        self.dispatcher.subscribe(DomainEvent.WITHDRAWN, withdraw_handler)

        assert self.dispatcher.publish(self.event) == 1

        deposit_handler.assert_called_once_with(self.event)
        withdraw_handler.assert_not_called()

    def test_global_handler(self):
        """Test catch-all handlers receive every event"""
        handler = Mock()
        self.dispatcher.subscribe_all(handler)

        self.dispatcher.publish(self.event)
        self.dispatcher.publish(EventPayload(DomainEvent.WITHDRAWN, "v1", "alice", 10, 0, 0))

        assert handler.call_count == 2
        assert len(self.dispatcher.handlers_for(DomainEvent.WITHDRAWN)) == 1

    def test_failing_handler_isolated(self):
        """Test one failing handler does not stop the others"""
        failing = Mock(side_effect=RuntimeError("boom"))
        healthy = Mock()
        self.dispatcher.subscribe(DomainEvent.DEPOSITED, failing)
        self.dispatcher.subscribe(DomainEvent.DEPOSITED, healthy)

        assert self.dispatcher.publish(self.event) == 1

        healthy.assert_called_once_with(self.event)

    def test_unsubscribe(self):
        """Test unsubscribed handlers stop receiving events"""
        handler = Mock()
        catch_all = Mock()
        self.dispatcher.subscribe(DomainEvent.DEPOSITED, handler)
        self.dispatcher.subscribe_all(catch_all)

        assert self.dispatcher.unsubscribe(DomainEvent.DEPOSITED, handler)
        assert self.dispatcher.unsubscribe(None, catch_all)

        assert self.dispatcher.publish(self.event) == 0
        handler.assert_not_called()
        catch_all.assert_not_called()

    def test_unsubscribe_unknown_handler(self):
        """Test removing a handler that was never added reports False"""
        assert self.dispatcher.unsubscribe(DomainEvent.DEPOSITED, Mock()) is False
        assert self.dispatcher.handlers_for(DomainEvent.DEPOSITED) == []

    def test_handler_may_subscribe_during_publish(self):
        """Test a handler added while publishing waits for the next event"""
        late = Mock()

        def register(event):
            self.dispatcher.subscribe(DomainEvent.DEPOSITED, late)

        self.dispatcher.subscribe(DomainEvent.DEPOSITED, register)

        self.dispatcher.publish(self.event)
        late.assert_not_called()

        self.dispatcher.publish(self.event)
        late.assert_called_once_with(self.event)
