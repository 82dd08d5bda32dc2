"""
Tests for the hash-chained audit trail
"""

import pytest

from custody_vault.audit import AuditTrail, AuditEvent, AuditEventType
from custody_vault.storage import InMemoryStorage, SQLiteStorage


class TestAuditTrail:
    """Test audit trail logging and integrity checks"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)

    def _log(self, event_type=AuditEventType.DEPOSITED, account="alice", amount=10,
             new_balance=10, total=10, vault_id="v1"):
        return self.audit.log_event(
            event_type=event_type,
            vault_id=vault_id,
            account=account,
            amount=amount,
            new_balance=new_balance,
            total_custodied=total
        )

    def test_log_event(self):
        """Test a logged event carries its fields and a valid hash"""
        event = self._log(amount=50, new_balance=50, total=50)

        assert event.event_type == AuditEventType.DEPOSITED
        assert event.account == "alice"
        assert event.amount == 50
        assert event.previous_hash == ""
        assert len(event.current_hash) == 64
        assert event.verify_hash()
        assert self.audit.get_latest_hash() == event.current_hash
        assert self.audit.count_events() == 1

    def test_events_are_chained(self):
        """Test each event links to its predecessor"""
        first = self._log()
        second = self._log(event_type=AuditEventType.WITHDRAWN, amount=5, new_balance=5, total=5)

        assert second.previous_hash == first.current_hash

        result = self.audit.verify_integrity()
        assert result["valid"] is True
        assert result["total_events"] == 2
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_empty_trail_is_valid(self):
        """Test verifying an empty trail"""
        assert self.audit.verify_integrity() == {
            "valid": True, "total_events": 0, "hash_errors": [], "chain_breaks": []
        }

    def test_tampering_detected(self):
        """Test a modified stored record breaks verification"""
        event = self._log()
        self._log(amount=5, new_balance=15, total=15)

        stored = self.storage.load("audit_events", event.id)
        stored["amount"] = 1000
        self.storage.save("audit_events", event.id, stored)

        result = self.audit.verify_integrity()
        assert result["valid"] is False
        assert result["hash_errors"][0]["event_id"] == event.id

    def test_queries(self):
        """Test lookups by account and by type"""
        self._log(account="alice")
        self._log(account="bob")
        self._log(event_type=AuditEventType.WITHDRAWN, account="alice", amount=3, new_balance=7, total=17)
        self._log(account="alice", vault_id="v2")

        assert len(self.audit.get_events_for_account("alice")) == 3
        assert len(self.audit.get_events_for_account("alice", vault_id="v1")) == 2
        assert len(self.audit.get_events_for_account("alice", limit=1)) == 1

        withdrawals = self.audit.get_events_by_type(AuditEventType.WITHDRAWN)
        assert [e.amount for e in withdrawals] == [3]
        assert len(self.audit.get_events_by_type(AuditEventType.DEPOSITED, vault_id="v2")) == 1
        assert len(self.audit.get_all_events()) == 4

    def test_serialization(self):
        """Test an event survives to_dict/from_dict with its hash intact"""
        event = self._log(amount=2 ** 100, new_balance=2 ** 100, total=2 ** 100)

        restored = AuditEvent.from_dict(event.to_dict())

        assert restored.event_type == AuditEventType.DEPOSITED
        assert restored.amount == 2 ** 100
        assert restored.verify_hash()

    def test_chain_resumes_after_reload(self, tmp_path):
        """Test a new trail on existing storage continues the chain"""
        storage = SQLiteStorage(tmp_path / "audit.db")
        first_trail = AuditTrail(storage)
        first = first_trail.log_event(AuditEventType.DEPOSITED, "v1", "alice", 10, 10, 10)

        second_trail = AuditTrail(storage)
        second = second_trail.log_event(AuditEventType.WITHDRAWN, "v1", "alice", 4, 6, 6)

        assert second.previous_hash == first.current_hash
        assert second_trail.verify_integrity()["valid"]
        storage.close()

    def test_reload_after_rolled_back_write(self):
        """Test the chain continues from storage after a batch is rolled back"""
        first = self._log()

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self._log(amount=5, new_balance=15, total=15)
                raise RuntimeError("abort")

        assert self.audit.get_latest_hash() != first.current_hash
        self.audit.reload()
        assert self.audit.get_latest_hash() == first.current_hash

        second = self._log(amount=5, new_balance=15, total=15)

        assert second.previous_hash == first.current_hash
        assert self.audit.verify_integrity() == {
            'valid': True, 'total_events': 2, 'hash_errors': [], 'chain_breaks': []
        }
