"""
Vault Ledger Store

Per-account custodied balances, the aggregate custodied total, and the two
operation counters. Pure state: the store applies the mutations it is told
to apply and never decides whether they are allowed. Authorization lives in
the vault engine, the only owner of a store.

State is held in memory and written through to a storage backend, namespaced
by vault id, whenever the engine flushes a committed operation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from types import MappingProxyType

from .storage import StorageInterface


BALANCES_TABLE = "vault_balances"
STATE_TABLE = "vault_state"


@dataclass(frozen=True)
class LedgerSnapshot:
    """Immutable point-in-time copy of a ledger"""
    balances: MappingProxyType
    total_custodied: int
    deposit_count: int
    withdrawal_count: int
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balances": dict(self.balances),
            "total_custodied": self.total_custodied,
            "deposit_count": self.deposit_count,
            "withdrawal_count": self.withdrawal_count,
            "taken_at": self.taken_at.isoformat()
        }


class LedgerStore:
    """
    Account balances plus the aggregate total and operation counters.

    Invariant maintained by callers: total_custodied equals the sum of all
    balances once an operation has completed.
    """

    def __init__(self, storage: StorageInterface, vault_id: str):
        self.storage = storage
        self.vault_id = vault_id
        self._balances: Dict[str, int] = {}
        self._total_custodied = 0
        self._deposit_count = 0
        self._withdrawal_count = 0

    def balance_of(self, account: str) -> int:
        """Balance of an account, 0 if it never deposited"""
        return self._balances.get(account, 0)

    def has_account(self, account: str) -> bool:
        return account in self._balances

    @property
    def total_custodied(self) -> int:
        return self._total_custodied

    @property
    def deposit_count(self) -> int:
        return self._deposit_count

    @property
    def withdrawal_count(self) -> int:
        return self._withdrawal_count

    def accounts(self) -> Dict[str, int]:
        """Copy of all balance records"""
        return dict(self._balances)

    def snapshot(self) -> LedgerSnapshot:
        """Immutable copy of the current ledger state"""
        return LedgerSnapshot(
            balances=MappingProxyType(dict(self._balances)),
            total_custodied=self._total_custodied,
            deposit_count=self._deposit_count,
            withdrawal_count=self._withdrawal_count
        )

    def credit(self, account: str, amount: int) -> int:
        """Add amount to an account and the total. Returns the new balance."""
        new_balance = self._balances.get(account, 0) + amount
        self._balances[account] = new_balance
        self._total_custodied += amount
        return new_balance

    def debit(self, account: str, amount: int) -> int:
        """Remove amount from an account and the total. Returns the new balance."""
        balance = self._balances.get(account, 0)
        if amount > balance:
            raise ValueError(f"Debit of {amount} exceeds balance {balance} of {account}")
        self._balances[account] = balance - amount
        self._total_custodied -= amount
        return self._balances[account]

    def record_deposit(self) -> None:
        self._deposit_count += 1

    def record_withdrawal(self) -> None:
        self._withdrawal_count += 1

    def unrecord_deposit(self) -> None:
        """Undo record_deposit for an operation that did not commit"""
        self._deposit_count -= 1

    def unrecord_withdrawal(self) -> None:
        """Undo record_withdrawal for an operation that did not commit"""
        self._withdrawal_count -= 1

    def _balance_key(self, account: str) -> str:
        return f"{self.vault_id}:{account}"

    def _state_record(self) -> Dict[str, Any]:
        return {
            "vault_id": self.vault_id,
            "total_custodied": self._total_custodied,
            "deposit_count": self._deposit_count,
            "withdrawal_count": self._withdrawal_count
        }

    def flush(self, account: str) -> None:
        """Write an account record and the aggregate state in one atomic batch"""
        with self.storage.atomic():
            self.storage.save(BALANCES_TABLE, self._balance_key(account), {
                "vault_id": self.vault_id,
                "account": account,
                "balance": self._balances.get(account, 0)
            })
            state = self.storage.load(STATE_TABLE, self.vault_id) or {}
            state.update(self._state_record())
            self.storage.save(STATE_TABLE, self.vault_id, state)

    def initialize(self, policy: Dict[str, Any]) -> None:
        """Persist the empty ledger together with the vault's policy"""
        state = self._state_record()
        state["policy"] = policy
        state["created_at"] = datetime.now(timezone.utc).isoformat()
        self.storage.save(STATE_TABLE, self.vault_id, state)

    def exists(self) -> bool:
        """Check whether this vault id already has persisted state"""
        return self.storage.exists(STATE_TABLE, self.vault_id)

    def load(self) -> Optional[Dict[str, Any]]:
        """
        Load persisted ledger state into memory.

        Returns:
            Persisted policy dictionary, or None if the vault was never stored
        """
        state = self.storage.load(STATE_TABLE, self.vault_id)
        if not state:
            return None

        self._balances = {
            record["account"]: int(record["balance"])
            for record in self.storage.find(BALANCES_TABLE, {"vault_id": self.vault_id})
        }
        self._total_custodied = int(state.get("total_custodied", 0))
        self._deposit_count = int(state.get("deposit_count", 0))
        self._withdrawal_count = int(state.get("withdrawal_count", 0))
        return state.get("policy")
