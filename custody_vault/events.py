"""
Vault Events

Committed deposits and withdrawals are announced to in-process subscribers,
for monitors that watch the vault without being wired into the engine.
A subscriber that raises is logged and skipped.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock

from .audit import AuditEvent


class DomainEvent(Enum):
    """Domain events emitted by a vault"""
    DEPOSITED = "vault.deposited"
    WITHDRAWN = "vault.withdrawn"


@dataclass(frozen=True)
class EventPayload:
    """What a subscriber sees of one committed operation"""
    event_type: DomainEvent
    vault_id: str
    account: str
    amount: int
    new_balance: int
    total_custodied: int
    audit_event_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_audit(cls, event_type: DomainEvent, record: AuditEvent) -> 'EventPayload':
        """Announce the operation an audit record describes"""
        return cls(
            event_type=event_type,
            vault_id=record.vault_id,
            account=record.account,
            amount=record.amount,
            new_balance=record.new_balance,
            total_custodied=record.total_custodied,
            audit_event_id=record.id
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['event_type'] = self.event_type.value
        data['timestamp'] = self.timestamp.isoformat()
        return data


Handler = Callable[[EventPayload], Any]


class EventDispatcher:
    """
    Fan-out of vault events to subscribers.

    Handlers run synchronously on the publishing thread, after the engine
    has committed the operation.
    """

    def __init__(self):
        self._handlers: Dict[Optional[DomainEvent], List[Handler]] = {}
        self._lock = RLock()
        self.logger = logging.getLogger("custody_vault.events")

    def subscribe(self, event_type: DomainEvent, handler: Handler) -> None:
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
        self.logger.debug(f"{_name(handler)} subscribed to {event_type.value}")

    def subscribe_all(self, handler: Handler) -> None:
        """Receive deposits and withdrawals alike"""
        with self._lock:
            self._handlers.setdefault(None, []).append(handler)

    def unsubscribe(self, event_type: Optional[DomainEvent], handler: Handler) -> bool:
        """
        Stop delivering to a handler

        Args:
            event_type: The type it subscribed to, None for subscribe_all

        Returns:
            False if the handler was not subscribed
        """
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler not in handlers:
                return False
            handlers.remove(handler)
            return True

    def handlers_for(self, event_type: DomainEvent) -> List[Handler]:
        with self._lock:
            return list(self._handlers.get(event_type, [])) + list(self._handlers.get(None, []))

    def publish(self, event: EventPayload) -> int:
        """
        Deliver an event to its subscribers

        Returns:
            Number of handlers that accepted the event without raising
        """
        delivered = 0
        for handler in self.handlers_for(event.event_type):
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                self.logger.error(
                    f"{_name(handler)} failed on {event.event_type.value} "
                    f"for {event.vault_id}:{event.account}: {e}"
                )
        return delivered


def _name(handler: Handler) -> str:
    return getattr(handler, '__name__', repr(handler))
