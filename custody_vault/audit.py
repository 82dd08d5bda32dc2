"""
Audit Trail Module

Append-only log of committed vault operations. Each record carries the
SHA-256 hash of its predecessor, so editing, dropping or reordering stored
records is detectable. Records are kept in write order by the storage
backend; verification walks them in that order.
"""

import hashlib
import json
import threading
from datetime import datetime, timezone
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .storage import StorageInterface


class AuditEventType(Enum):
    """Types of audit events"""
    DEPOSITED = "Deposited"
    WITHDRAWN = "Withdrawn"


@dataclass
class AuditEvent:
    """One committed deposit or withdrawal"""
    id: str
    created_at: datetime
    event_type: AuditEventType
    vault_id: str
    account: str
    amount: int
    new_balance: int
    total_custodied: int
    previous_hash: str
    current_hash: str = ""

    def _hashed_fields(self) -> Dict[str, Any]:
        fields = self.to_dict()
        del fields['current_hash']
        return fields

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        canonical = json.dumps(self._hashed_fields(), sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(canonical.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        data['event_type'] = self.event_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        if isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail.

    The trail remembers the hash of the newest stored record. When it shares
    a storage backend with the ledger, ``log_event`` can run inside the same
    ``storage.atomic()`` batch as the ledger write; after a rolled-back batch
    call ``reload()`` so the chain continues from what actually persisted.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self._lock = threading.Lock()
        self._last_hash: Optional[str] = None
        self.reload()

    def reload(self) -> None:
        """Re-read the chain head from storage"""
        records = self.storage.load_all(self.table_name)
        with self._lock:
            self._last_hash = records[-1]["current_hash"] if records else None

    def log_event(
        self,
        event_type: AuditEventType,
        vault_id: str,
        account: str,
        amount: int,
        new_balance: int,
        total_custodied: int
    ) -> AuditEvent:
        """
        Append an audit record

        Args:
            event_type: DEPOSITED or WITHDRAWN
            vault_id: Vault the operation ran against
            account: Account whose balance changed
            amount: Amount moved by the operation
            new_balance: Account balance after the operation
            total_custodied: Vault total after the operation

        Returns:
            The stored AuditEvent
        """
        with self.storage.atomic(), self._lock:
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=datetime.now(timezone.utc),
                event_type=event_type,
                vault_id=vault_id,
                account=account,
                amount=amount,
                new_balance=new_balance,
                total_custodied=total_custodied,
                previous_hash=self._last_hash or ""
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())
            self._last_hash = event.current_hash
            return event

    def _query(self, filters: Dict[str, Any], limit: Optional[int]) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.find(self.table_name, filters)]
        return events[-limit:] if limit else events

    def get_events_for_account(
        self,
        account: str,
        vault_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """
        Audit records of one account, oldest first

        Args:
            account: Account identity
            vault_id: Restrict to a single vault
            limit: Keep only the most recent records
        """
        filters: Dict[str, Any] = {'account': account}
        if vault_id:
            filters['vault_id'] = vault_id
        return self._query(filters, limit)

    def get_events_by_type(
        self,
        event_type: AuditEventType,
        vault_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """Audit records of one type, oldest first"""
        filters: Dict[str, Any] = {'event_type': event_type.value}
        if vault_id:
            filters['vault_id'] = vault_id
        return self._query(filters, limit)

    def get_all_events(self) -> List[AuditEvent]:
        return self._query({}, None)

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Walk the chain in stored order

        Returns:
            {'valid', 'total_events', 'hash_errors', 'chain_breaks'}
        """
        hash_errors: List[Dict[str, Any]] = []
        chain_breaks: List[Dict[str, Any]] = []
        events = self.get_all_events()

        expected_previous = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                hash_errors.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != expected_previous:
                chain_breaks.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': expected_previous,
                    'actual_previous_hash': event.previous_hash
                })
            expected_previous = event.current_hash

        return {
            'valid': not hash_errors and not chain_breaks,
            'total_events': len(events),
            'hash_errors': hash_errors,
            'chain_breaks': chain_breaks
        }

    def count_events(self) -> int:
        return self.storage.count(self.table_name)

    def get_latest_hash(self) -> Optional[str]:
        return self._last_hash
