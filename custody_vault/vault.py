"""
Vault Engine Module

The only component with behavior. Validates deposits and withdrawals against
the vault policy and the ledger, mutates the ledger, moves value out through
the transfer gate, and records every committed operation in the audit trail.

Ordering inside an operation is always checks, then ledger effects, then the
external transfer. While a transfer is in flight its amount stays reserved
against the global cap; a transfer failure compensates the effects so the
ledger ends up as if the call never executed, and never above the cap.
"""

from typing import Any, Dict, List, Optional, Tuple
import threading
import uuid

from .audit import AuditTrail, AuditEvent, AuditEventType
from .config import VaultConfig, get_config
from .errors import (
    VaultError, ZeroAmount, CapExceeded, ThresholdExceeded,
    InsufficientVault, NativeTransferFailed, TransferIndeterminate
)
from .events import EventDispatcher, EventPayload, DomainEvent
from .guard import InflowGuard
from .ledger import LedgerStore, LedgerSnapshot
from .logging_config import get_logger, log_action
from .policy import VaultPolicy
from .storage import StorageInterface, InMemoryStorage, create_storage
from .transfer import TransferGate, InMemoryTransferGate, HttpTransferGate


def _require_amount(value: Any, name: str = "amount") -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{name} must be a non-negative integer, got {value!r}")


def _require_account(account: Any) -> None:
    if not isinstance(account, str) or not account:
        raise ValueError(f"account must be a non-empty string, got {account!r}")


class VaultEngine:
    """
    Single-asset custodial vault.

    Every public operation holds the engine's reentrant lock for its whole
    duration, including the outbound transfer. Calls from other threads are
    serialized; a call made by the transfer gate on the same thread re-enters
    and sees the ledger already reflecting the withdrawal in flight.
    """

    OPERATIONS = frozenset({"deposit", "withdraw", "vault_of", "get_config"})

    def __init__(
        self,
        global_cap: int,
        withdrawal_ceiling: int,
        transfer_gate: Optional[TransferGate] = None,
        storage: Optional[StorageInterface] = None,
        audit_trail: Optional[AuditTrail] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        vault_id: Optional[str] = None
    ):
        """
        Create a new, empty vault.

        Args:
            global_cap: Maximum aggregate custodied value
            withdrawal_ceiling: Maximum value a single withdrawal may move
            transfer_gate: Outbound transfer collaborator (in-memory by default)
            storage: Storage backend (in-memory by default)
            audit_trail: Audit trail (created on the same storage by default)
            event_dispatcher: Optional dispatcher for external monitors
            vault_id: Identity of the vault in storage (generated by default)

        Raises:
            InvalidConstructorParams: a policy parameter is zero, or the
                ceiling exceeds the cap
            ValueError: vault_id already exists in storage
        """
        policy = VaultPolicy(global_cap=global_cap, withdrawal_ceiling=withdrawal_ceiling)

        storage = storage or InMemoryStorage()
        ledger = LedgerStore(storage, vault_id or str(uuid.uuid4()))
        if ledger.exists():
            raise ValueError(f"Vault {ledger.vault_id} already exists; use VaultEngine.open")
        ledger.initialize(policy.to_dict())

        self._setup(policy, ledger, transfer_gate, audit_trail, event_dispatcher)

        log_action(
            self.logger, "info", "Vault created",
            action="create_vault", resource=f"vault:{self.vault_id}", vault_id=self.vault_id,
            extra=policy.to_dict()
        )

    def _setup(
        self,
        policy: VaultPolicy,
        ledger: LedgerStore,
        transfer_gate: Optional[TransferGate],
        audit_trail: Optional[AuditTrail],
        event_dispatcher: Optional[EventDispatcher]
    ) -> None:
        self._policy = policy
        self._ledger = ledger
        self.storage = ledger.storage
        self.transfer_gate = transfer_gate or InMemoryTransferGate()
        self.audit_trail = audit_trail or AuditTrail(self.storage)
        self._event_dispatcher = event_dispatcher
        self._guard = InflowGuard(self.OPERATIONS)
        self._pending_outflow = 0
        self._lock = threading.RLock()
        self.logger = get_logger("custody_vault.vault")

    @classmethod
    def open(
        cls,
        vault_id: str,
        storage: StorageInterface,
        transfer_gate: Optional[TransferGate] = None,
        audit_trail: Optional[AuditTrail] = None,
        event_dispatcher: Optional[EventDispatcher] = None
    ) -> 'VaultEngine':
        """
        Reopen a vault previously created on the same storage backend.

        The stored policy is validated again on load.

        Raises:
            ValueError: no vault with this id exists in storage
        """
        ledger = LedgerStore(storage, vault_id)
        policy_data = ledger.load()
        if policy_data is None:
            raise ValueError(f"Vault {vault_id} not found")

        engine = cls.__new__(cls)
        engine._setup(VaultPolicy.from_dict(policy_data), ledger, transfer_gate, audit_trail, event_dispatcher)
        log_action(
            engine.logger, "info", "Vault reopened",
            action="open_vault", resource=f"vault:{vault_id}", vault_id=vault_id,
            extra={"total_custodied": ledger.total_custodied}
        )
        return engine

    @classmethod
    def from_config(cls, config: Optional[VaultConfig] = None) -> 'VaultEngine':
        """Build a vault, its storage and its transfer gate from settings"""
        config = config or get_config()
        storage = create_storage(config.database_url)
        vault_id = config.vault_id or str(uuid.uuid4())

        if config.transfer_gate == "http":
            gate: TransferGate = HttpTransferGate(
                base_url=config.settlement_url,
                timeout=config.settlement_timeout,
                api_key=config.settlement_api_key or None,
                vault_id=vault_id
            )
        elif config.transfer_gate == "memory":
            gate = InMemoryTransferGate()
        else:
            raise ValueError(f"Unknown transfer gate: {config.transfer_gate}")

        dispatcher = EventDispatcher() if config.enable_events else None

        if LedgerStore(storage, vault_id).exists():
            return cls.open(vault_id, storage, transfer_gate=gate, event_dispatcher=dispatcher)

        return cls(
            global_cap=config.global_cap,
            withdrawal_ceiling=config.withdrawal_ceiling,
            transfer_gate=gate,
            storage=storage,
            event_dispatcher=dispatcher,
            vault_id=vault_id
        )

    @property
    def vault_id(self) -> str:
        return self._ledger.vault_id

    @property
    def global_cap(self) -> int:
        return self._policy.global_cap

    @property
    def withdrawal_ceiling(self) -> int:
        return self._policy.withdrawal_ceiling

    @property
    def event_dispatcher(self) -> Optional[EventDispatcher]:
        return self._event_dispatcher
    def deposit(self, account: str, value: int) -> AuditEvent:
        """
        Credit value already received from account.

        The cap check counts value reserved by withdrawals whose transfer is
        still in flight, so a failed transfer can always be credited back.

        Args:
            account: Depositor identity
            value: Units of the asset attached to the call

        Returns:
            The Deposited audit record

        Raises:
            ZeroAmount: value is zero
            CapExceeded: the total would exceed the global cap
        """
        _require_account(account)
        _require_amount(value, "value")

        with self._lock:
            try:
                if value == 0:
                    raise ZeroAmount()

                attempted = self._ledger.total_custodied + self._pending_outflow + value
                if attempted > self._policy.global_cap:
                    raise CapExceeded(attempted=attempted, cap=self._policy.global_cap)
            except VaultError as e:
                self._log_rejection("deposit", account, value, e)
                raise

            self._ledger.credit(account, value)
            self._ledger.record_deposit()
            try:
                with self.storage.atomic():
                    self._ledger.flush(account)
                    record = self._record(AuditEventType.DEPOSITED, account, value)
            except Exception:
                self._ledger.debit(account, value)
                self._ledger.unrecord_deposit()
                self.audit_trail.reload()
                raise

            self._announce(DomainEvent.DEPOSITED, record)
            return record

    def withdraw(self, account: str, amount: int) -> AuditEvent:
        """
        Pay amount out of account's balance to account's own destination.

        Args:
            account: Caller identity; the only possible destination
            amount: Units of the asset to withdraw

        Returns:
            The Withdrawn audit record

        Raises:
            ZeroAmount: amount is zero
            ThresholdExceeded: amount is above the withdrawal ceiling
            InsufficientVault: account's balance is below amount
            NativeTransferFailed: the transfer gate did not move the value
            TransferIndeterminate: the gate cannot tell whether the value
                moved; the debit stands until reconciled
        """
        _require_account(account)
        _require_amount(amount)

        with self._lock:
            try:
                if amount == 0:
                    raise ZeroAmount()

                if amount > self._policy.withdrawal_ceiling:
                    raise ThresholdExceeded(attempted=amount, threshold=self._policy.withdrawal_ceiling)

                balance = self._ledger.balance_of(account)
                if balance < amount:
                    raise InsufficientVault(balance=balance, attempted=amount)
            except VaultError as e:
                self._log_rejection("withdraw", account, amount, e)
                raise

            # Effects
            self._ledger.debit(account, amount)
            self._ledger.record_withdrawal()
            try:
                self._ledger.flush(account)
            except Exception:
                self._revert_withdrawal(account, amount, persist=False)
                raise

            # Interaction
            cause: Optional[Exception] = None
            self._pending_outflow += amount
            try:
                settled = self.transfer_gate.transfer(account, amount)
            except TransferIndeterminate as e:
                log_action(
                    self.logger, "error", f"withdraw outcome unknown: {e.reference}",
                    account=account, action="withdraw", resource=f"vault:{self.vault_id}",
                    vault_id=self.vault_id, extra={"amount": amount, **e.to_dict()}
                )
                raise
            except Exception as e:
                settled = False
                cause = e
            finally:
                self._pending_outflow -= amount

            if not settled:
                self._revert_withdrawal(account, amount, persist=True)
                error = NativeTransferFailed()
                self._log_rejection("withdraw", account, amount, error, cause=cause)
                if cause is not None:
                    raise error from cause
                raise error

            try:
                record = self._record(AuditEventType.WITHDRAWN, account, amount)
            except Exception:
                log_action(
                    self.logger, "error", "withdraw settled but audit record was not written",
                    account=account, action="withdraw", resource=f"vault:{self.vault_id}",
                    vault_id=self.vault_id, extra={"amount": amount}
                )
                self.audit_trail.reload()
                raise

            self._announce(DomainEvent.WITHDRAWN, record)
            return record

    def _revert_withdrawal(self, account: str, amount: int, persist: bool) -> None:
        """Compensate withdrawal effects that never committed"""
        self._ledger.credit(account, amount)
        self._ledger.unrecord_withdrawal()
        if persist:
            self._ledger.flush(account)

    def vault_of(self, account: str) -> int:
        """Custodied balance of account, 0 if it never deposited"""
        with self._lock:
            return self._ledger.balance_of(account)

    def get_config(self) -> Tuple[int, int]:
        """Return (global_cap, withdrawal_ceiling)"""
        return self._policy.as_tuple()

    def receive(self, sender: str, value: int) -> None:
        """
        Value sent to the vault without naming an operation.

        Raises:
            DirectETHNotAllowed: always, whatever the amount
        """
        _require_amount(value, "value")
        with self._lock:
            self._guard.check_receive(sender, value)

    def fallback(self, sender: str, operation: str, value: int = 0) -> None:
        """
        A call naming an operation the vault does not define.

        Zero-value calls are tolerated as a no-op since they cannot move the
        custodied total.

        Raises:
            DirectETHNotAllowed: value is nonzero
            ValueError: operation is one the vault defines
        """
        _require_amount(value, "value")
        if self._guard.is_known(operation):
            raise ValueError(f"'{operation}' is a defined operation; dispatch it through call()")

        with self._lock:
            self._guard.check_call(sender, operation, value)
            self.logger.debug(f"Ignored zero-value call to undefined operation '{operation}' from {sender}")

    def call(self, sender: str, operation: str, value: int = 0, **params: Any) -> Any:
        """
        Dispatch a call that may carry attached value.

        Args:
            sender: Caller identity
            operation: Operation name; empty means a bare value transfer
            value: Units of the asset attached to the call
            **params: Operation arguments (amount for withdraw, account for vault_of)

        Returns:
            Whatever the dispatched operation returns
        """
        _require_amount(value, "value")

        if not operation:
            return self.receive(sender, value)

        if not self._guard.is_known(operation):
            return self.fallback(sender, operation, value)

        with self._lock:
            self._guard.check_call(sender, operation, value)

            if operation == "deposit":
                return self.deposit(sender, value)
            if operation == "withdraw":
                if "amount" not in params:
                    raise ValueError("withdraw requires an amount")
                return self.withdraw(sender, params["amount"])
            if operation == "vault_of":
                return self.vault_of(params.get("account", sender))
            return self.get_config()

    @property
    def total_custodied(self) -> int:
        with self._lock:
            return self._ledger.total_custodied

    @property
    def deposit_count(self) -> int:
        with self._lock:
            return self._ledger.deposit_count

    @property
    def withdrawal_count(self) -> int:
        with self._lock:
            return self._ledger.withdrawal_count

    def accounts(self) -> Dict[str, int]:
        """All balance records, including those that reached zero"""
        with self._lock:
            return self._ledger.accounts()

    def snapshot(self) -> LedgerSnapshot:
        """Immutable copy of the ledger"""
        with self._lock:
            return self._ledger.snapshot()

    def verify_invariants(self) -> Dict[str, Any]:
        """
        Check the ledger invariants

        Returns:
            Dictionary with the check results
        """
        with self._lock:
            balances = self._ledger.accounts()
            total = self._ledger.total_custodied

        violations: List[str] = []
        balance_sum = sum(balances.values())

        if balance_sum != total:
            violations.append(f"total_custodied {total} != sum of balances {balance_sum}")
        if total > self._policy.global_cap:
            violations.append(f"total_custodied {total} exceeds global cap {self._policy.global_cap}")
        negative = sorted(account for account, balance in balances.items() if balance < 0)
        if negative:
            violations.append(f"negative balances: {', '.join(negative)}")

        return {
            'valid': not violations,
            'total_custodied': total,
            'sum_of_balances': balance_sum,
            'global_cap': self._policy.global_cap,
            'accounts': len(balances),
            'violations': violations
        }

    def close(self) -> None:
        """Release the transfer gate and storage backend"""
        self.transfer_gate.close()
        self.storage.close()

    def _record(self, audit_type: AuditEventType, account: str, amount: int) -> AuditEvent:
        """Append the audit record of a committed operation"""
        new_balance = self._ledger.balance_of(account)
        total = self._ledger.total_custodied

        event = self.audit_trail.log_event(
            event_type=audit_type,
            vault_id=self.vault_id,
            account=account,
            amount=amount,
            new_balance=new_balance,
            total_custodied=total
        )

        log_action(
            self.logger, "info", f"{audit_type.value}: {amount}",
            account=account, action=audit_type.value.lower(),
            resource=f"vault:{self.vault_id}", vault_id=self.vault_id,
            extra={"amount": amount, "new_balance": new_balance, "total_custodied": total}
        )
        return event

    def _announce(self, domain_event: DomainEvent, record: AuditEvent) -> None:
        """Notify subscribers once the operation has committed"""
        if not self._event_dispatcher:
            return

        self._event_dispatcher.publish(EventPayload.from_audit(domain_event, record))

    def _log_rejection(
        self,
        operation: str,
        account: str,
        amount: int,
        error: VaultError,
        cause: Optional[Exception] = None
    ) -> None:
        extra: Dict[str, Any] = {"amount": amount, **error.to_dict()}
        if cause is not None:
            extra["cause"] = repr(cause)
        log_action(
            self.logger, "warning", f"{operation} rejected: {error.code}",
            account=account, action=operation, resource=f"vault:{self.vault_id}",
            vault_id=self.vault_id, extra=extra
        )
