"""
Pydantic schemas for API requests and responses
"""

from typing import List, Optional
from pydantic import BaseModel, Field

from .audit import AuditEvent


class DepositRequest(BaseModel):
    account: str = Field(..., min_length=1, description="Depositor identity")
    value: int = Field(..., ge=0, description="Units of the asset attached to the deposit")


class WithdrawRequest(BaseModel):
    account: str = Field(..., min_length=1, description="Caller identity; also the payout destination")
    amount: int = Field(..., ge=0, description="Units of the asset to withdraw")


class ValueTransferRequest(BaseModel):
    account: str = Field(..., min_length=1, description="Sender identity")
    value: int = Field(0, ge=0, description="Units of the asset attached to the call")
    amount: Optional[int] = Field(None, ge=0, description="Withdrawal amount for /call/withdraw")
    target: Optional[str] = Field(None, description="Account to query for /call/vault_of")


class AuditRecordModel(BaseModel):
    id: str
    event: str
    account: str
    amount: int
    new_balance: int
    total_custodied: int
    created_at: str
    current_hash: str

    @classmethod
    def from_event(cls, event: AuditEvent) -> 'AuditRecordModel':
        return cls(
            id=event.id,
            event=event.event_type.value,
            account=event.account,
            amount=event.amount,
            new_balance=event.new_balance,
            total_custodied=event.total_custodied,
            created_at=event.created_at.isoformat(),
            current_hash=event.current_hash
        )


class OperationResponse(BaseModel):
    message: str
    record: AuditRecordModel


class ConfigResponse(BaseModel):
    global_cap: int
    withdrawal_ceiling: int


class BalanceResponse(BaseModel):
    account: str
    balance: int


class StatsResponse(BaseModel):
    vault_id: str
    total_custodied: int
    deposit_count: int
    withdrawal_count: int
    accounts: int


class AuditHistoryResponse(BaseModel):
    account: str
    records: List[AuditRecordModel]
