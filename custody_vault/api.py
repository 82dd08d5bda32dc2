"""
FastAPI REST API Module

Exposes a vault over HTTP: deposits, withdrawals, balance and policy queries,
the unsolicited-inflow entry points, and audit queries.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Depends, Request, status
from fastapi.responses import JSONResponse
import uvicorn

from .config import VaultConfig, get_config
from .errors import (
    VaultError, ZeroAmount, CapExceeded, ThresholdExceeded, InsufficientVault,
    DirectETHNotAllowed, NativeTransferFailed, InvalidConstructorParams, TransferIndeterminate
)
from .schemas import (
    DepositRequest, WithdrawRequest, ValueTransferRequest, AuditRecordModel,
    OperationResponse, ConfigResponse, BalanceResponse, StatsResponse,
    AuditHistoryResponse
)
from .logging_config import setup_logging
from .audit import AuditEvent
from .vault import VaultEngine
from . import __version__


ERROR_STATUS = {
    ZeroAmount: status.HTTP_400_BAD_REQUEST,
    InvalidConstructorParams: status.HTTP_400_BAD_REQUEST,
    CapExceeded: status.HTTP_409_CONFLICT,
    ThresholdExceeded: status.HTTP_409_CONFLICT,
    InsufficientVault: status.HTTP_409_CONFLICT,
    DirectETHNotAllowed: status.HTTP_405_METHOD_NOT_ALLOWED,
    NativeTransferFailed: status.HTTP_502_BAD_GATEWAY,
    TransferIndeterminate: status.HTTP_504_GATEWAY_TIMEOUT,
}


def get_vault_engine(request: Request) -> VaultEngine:
    """Dependency returning the vault bound to the application"""
    return request.app.state.engine


def create_app(engine: Optional[VaultEngine] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Custody Vault API",
        description="Single-asset custodial ledger with a global cap and per-withdrawal ceiling",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.engine = engine or VaultEngine.from_config()

    @app.exception_handler(VaultError)
    async def vault_error_handler(request: Request, exc: VaultError):
        return JSONResponse(
            status_code=ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST),
            content=exc.to_dict()
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "ValueError", "detail": {"message": str(exc)}}
        )

    @app.get("/health")
    def health_check(engine: VaultEngine = Depends(get_vault_engine)):
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "custody_vault",
            "version": __version__,
            "vault_id": engine.vault_id,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.get("/config", response_model=ConfigResponse)
    def get_vault_config(engine: VaultEngine = Depends(get_vault_engine)):
        """Get the vault policy"""
        global_cap, withdrawal_ceiling = engine.get_config()
        return ConfigResponse(global_cap=global_cap, withdrawal_ceiling=withdrawal_ceiling)

    @app.get("/vault/{account}", response_model=BalanceResponse)
    def vault_of(account: str, engine: VaultEngine = Depends(get_vault_engine)):
        """Get the custodied balance of an account"""
        return BalanceResponse(account=account, balance=engine.vault_of(account))

    @app.get("/stats", response_model=StatsResponse)
    def get_stats(engine: VaultEngine = Depends(get_vault_engine)):
        """Get the vault total and operation counters"""
        snapshot = engine.snapshot()
        return StatsResponse(
            vault_id=engine.vault_id,
            total_custodied=snapshot.total_custodied,
            deposit_count=snapshot.deposit_count,
            withdrawal_count=snapshot.withdrawal_count,
            accounts=len(snapshot.balances)
        )

    @app.post("/deposit", response_model=OperationResponse)
    def deposit(request: DepositRequest, engine: VaultEngine = Depends(get_vault_engine)):
        """Make a deposit"""
        record = engine.deposit(request.account, request.value)
        return OperationResponse(
            message="Deposit processed successfully",
            record=AuditRecordModel.from_event(record)
        )

    @app.post("/withdraw", response_model=OperationResponse)
    def withdraw(request: WithdrawRequest, engine: VaultEngine = Depends(get_vault_engine)):
        """Make a withdrawal"""
        record = engine.withdraw(request.account, request.amount)
        return OperationResponse(
            message="Withdrawal processed successfully",
            record=AuditRecordModel.from_event(record)
        )

    @app.post("/receive")
    def receive(request: ValueTransferRequest, engine: VaultEngine = Depends(get_vault_engine)):
        """Bare value transfer to the vault; always rejected"""
        engine.receive(request.account, request.value)

    @app.post("/call/{operation}")
    def call_operation(
        operation: str,
        request: ValueTransferRequest,
        engine: VaultEngine = Depends(get_vault_engine)
    ):
        """Dispatch a named operation that may carry attached value"""
        params: dict = {}
        if request.amount is not None:
            params["amount"] = request.amount
        if request.target is not None:
            params["account"] = request.target

        result: Any = engine.call(request.account, operation, request.value, **params)

        if isinstance(result, AuditEvent):
            return {"operation": operation, "record": AuditRecordModel.from_event(result).model_dump()}
        if isinstance(result, tuple):
            return {"operation": operation, "result": list(result)}
        return {"operation": operation, "result": result}

    @app.get("/audit/verify")
    def verify_audit(engine: VaultEngine = Depends(get_vault_engine)):
        """Verify audit chain integrity and ledger invariants"""
        return {
            "audit": engine.audit_trail.verify_integrity(),
            "ledger": engine.verify_invariants()
        }

    @app.get("/audit/{account}", response_model=AuditHistoryResponse)
    def get_account_audit(
        account: str,
        limit: Optional[int] = None,
        engine: VaultEngine = Depends(get_vault_engine)
    ):
        """Get audit records for an account"""
        events = engine.audit_trail.get_events_for_account(account, vault_id=engine.vault_id, limit=limit)
        return AuditHistoryResponse(
            account=account,
            records=[AuditRecordModel.from_event(event) for event in events]
        )

    return app


def run_server(config: Optional[VaultConfig] = None):
    """Run the FastAPI server"""
    config = config or get_config()
    setup_logging(config.log_level, config.log_format)
    app = create_app(VaultEngine.from_config(config))
    uvicorn.run(
        app,
        host=config.api_host,
        port=config.api_port,
        log_level=config.log_level.lower()
    )
