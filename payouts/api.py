from typing import Optional
from uuid import UUID
from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, configure_logging, get_settings
from .errors import (
    GatewayError, IneligibleError, IntegrityError, InvalidStateTransitionError,
    PayoutServiceError, ValidationError, WithdrawalNotFoundError,
)
from .executor import PayoutExecutor
from .gateways import GatewayRouter
from .models import (
    ApproveWithdrawalRequest, CashoutRequest, LedgerBalance, PayoutReport,
    PayoutStats, ReconcileWithdrawalRequest, RejectWithdrawalRequest,
    ReportListResponse, WithdrawalListResponse, WithdrawalRecord, WithdrawalStatus,
)
from .reports import compute_stats
from .storage import InMemoryStorage

configure_logging()

app = FastAPI(
    title="Tutor Payouts API",
    description="Credit ledger, cash-out approvals and scheduled tutor payouts",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

payout_executor = PayoutExecutor(InMemoryStorage(seed=True), GatewayRouter.from_settings())


def get_executor() -> PayoutExecutor:
    return payout_executor


def to_http_error(e: PayoutServiceError) -> HTTPException:
    if isinstance(e, WithdrawalNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, IneligibleError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"reason": e.reason.value, "message": e.detail or e.reason.value},
        )
    if isinstance(e, (InvalidStateTransitionError, IntegrityError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, GatewayError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "tutor-payouts"}


@app.get("/participants/{participant_id}/balance", response_model=LedgerBalance, tags=["Participants"])
def get_balance(participant_id: UUID, executor: PayoutExecutor = Depends(get_executor)) -> LedgerBalance:
    try:
        return executor.ledger.compute_balance(participant_id)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@app.post(
    "/participants/{participant_id}/cashout",
    response_model=WithdrawalRecord,
    status_code=status.HTTP_201_CREATED,
    tags=["Participants"],
)
def cashout(
    participant_id: UUID,
    request: CashoutRequest,
    executor: PayoutExecutor = Depends(get_executor),
) -> WithdrawalRecord:
    if executor.storage.get_participant(participant_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Participant {participant_id} not found")
    try:
        return executor.request_cashout(participant_id, request.credits)
    except PayoutServiceError as e:
        raise to_http_error(e)


@app.get("/withdrawals", response_model=WithdrawalListResponse, tags=["Withdrawals"])
def list_withdrawals(
    status_filter: Optional[WithdrawalStatus] = Query(default=None, alias="status"),
    participant_id: Optional[UUID] = None,
    limit: int = 50,
    offset: int = 0,
    executor: PayoutExecutor = Depends(get_executor),
) -> WithdrawalListResponse:
    records = executor.storage.list_withdrawals(status_filter, participant_id)
    return WithdrawalListResponse(withdrawals=records[offset:offset + limit], total_count=len(records))


@app.get("/withdrawals/{withdrawal_id}", response_model=WithdrawalRecord, tags=["Withdrawals"])
def get_withdrawal(withdrawal_id: UUID, executor: PayoutExecutor = Depends(get_executor)) -> WithdrawalRecord:
    try:
        return executor.get_withdrawal(withdrawal_id)
    except WithdrawalNotFoundError as e:
        raise to_http_error(e)


@app.post("/withdrawals/{withdrawal_id}/approve", response_model=WithdrawalRecord, tags=["Withdrawals"])
def approve_withdrawal(
    withdrawal_id: UUID,
    request: ApproveWithdrawalRequest,
    executor: PayoutExecutor = Depends(get_executor),
) -> WithdrawalRecord:
    try:
        return executor.approve_withdrawal(withdrawal_id, request.performed_by)
    except PayoutServiceError as e:
        raise to_http_error(e)


@app.post("/withdrawals/{withdrawal_id}/reject", response_model=WithdrawalRecord, tags=["Withdrawals"])
def reject_withdrawal(
    withdrawal_id: UUID,
    request: RejectWithdrawalRequest,
    executor: PayoutExecutor = Depends(get_executor),
) -> WithdrawalRecord:
    try:
        return executor.reject_withdrawal(withdrawal_id, request.performed_by, request.reason)
    except PayoutServiceError as e:
        raise to_http_error(e)


@app.post("/withdrawals/{withdrawal_id}/process", response_model=WithdrawalRecord, tags=["Withdrawals"])
def process_withdrawal(withdrawal_id: UUID, executor: PayoutExecutor = Depends(get_executor)) -> WithdrawalRecord:
    try:
        return executor.process_withdrawal(withdrawal_id)
    except PayoutServiceError as e:
        raise to_http_error(e)


@app.post("/withdrawals/{withdrawal_id}/reconcile", response_model=WithdrawalRecord, tags=["Withdrawals"])
def reconcile_withdrawal(
    withdrawal_id: UUID,
    request: ReconcileWithdrawalRequest,
    executor: PayoutExecutor = Depends(get_executor),
) -> WithdrawalRecord:
    try:
        return executor.reconcile_withdrawal(
            withdrawal_id, request.succeeded,
            performed_by=request.performed_by,
            transaction_id=request.transaction_id,
            error=request.error,
        )
    except PayoutServiceError as e:
        raise to_http_error(e)


@app.post("/cron/payouts", tags=["Payouts"])
def run_payouts(
    force: bool = False,
    dry_run: bool = False,
    authorization: Optional[str] = Header(default=None),
    executor: PayoutExecutor = Depends(get_executor),
    settings: Settings = Depends(get_settings),
):
    if settings.cron_secret and authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    report = executor.run_batch_sweep(force=force, dry_run=dry_run)
    if report is None:
        return {"message": "Not payout day"}
    return {"message": "Payout sweep completed", "report": report}


@app.get("/reports", response_model=ReportListResponse, tags=["Reports"])
def list_reports(limit: int = 50, offset: int = 0, executor: PayoutExecutor = Depends(get_executor)):
    reports, total = executor.storage.list_reports(limit, offset)
    return ReportListResponse(reports=reports, total_count=total, limit=limit, offset=offset)


@app.get("/reports/{report_id}", response_model=PayoutReport, tags=["Reports"])
def get_report(report_id: UUID, executor: PayoutExecutor = Depends(get_executor)) -> PayoutReport:
    report = executor.storage.get_report(report_id)
    if report is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Report {report_id} not found")
    return report


@app.get("/stats", response_model=PayoutStats, tags=["Reports"])
def payout_stats(executor: PayoutExecutor = Depends(get_executor)) -> PayoutStats:
    return compute_stats(executor.storage, executor.ledger)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
