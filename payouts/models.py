from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class SessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    SUCCESSFUL = "successful"
    CANCELLED = "cancelled"


class PayoutMethod(str, Enum):
    BANK = "bank"
    EWALLET = "ewallet"
    CONNECTED_ACCOUNT = "connected_account"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"


class WithdrawalSource(str, Enum):
    CASHOUT = "cashout"
    SWEEP = "sweep"
    MANUAL = "manual"


class IneligibleReason(str, Enum):
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    INCOMPLETE_PAYMENT_INFO = "IncompletePaymentInfo"


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    INELIGIBLE = "ineligible"
    GATEWAY = "gateway"
    INTEGRITY = "integrity"
    INTERNAL = "internal"


# Statuses that hold credits out of the available balance.
RESERVED_STATUSES = frozenset({
    WithdrawalStatus.PENDING,
    WithdrawalStatus.APPROVED,
    WithdrawalStatus.PROCESSING,
    WithdrawalStatus.COMPLETED,
})

TERMINAL_STATUSES = frozenset({
    WithdrawalStatus.COMPLETED,
    WithdrawalStatus.FAILED,
    WithdrawalStatus.REJECTED,
})

ALLOWED_TRANSITIONS = {
    WithdrawalStatus.PENDING: {
        WithdrawalStatus.APPROVED,
        WithdrawalStatus.PROCESSING,
        WithdrawalStatus.REJECTED,
    },
    WithdrawalStatus.APPROVED: {
        WithdrawalStatus.PROCESSING,
        WithdrawalStatus.REJECTED,
    },
    WithdrawalStatus.PROCESSING: {
        WithdrawalStatus.COMPLETED,
        WithdrawalStatus.FAILED,
    },
    WithdrawalStatus.COMPLETED: set(),
    WithdrawalStatus.FAILED: set(),
    WithdrawalStatus.REJECTED: set(),
}


class EarningEvent(BaseModel):
    id: UUID
    participant_id: UUID
    credits: Decimal
    status: SessionStatus = SessionStatus.SUCCESSFUL
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)

    def counts(self) -> bool:
        return self.status == SessionStatus.SUCCESSFUL


class PayoutDestination(BaseModel):
    method: PayoutMethod
    bank_name: Optional[str] = None
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    bank_branch: Optional[str] = None
    ewallet_number: Optional[str] = None
    ewallet_name: Optional[str] = None
    connected_account_id: Optional[str] = None
    connected_account_onboarded: bool = False

    model_config = ConfigDict(from_attributes=True)


class Participant(BaseModel):
    id: UUID
    name: str
    email: str
    settlement_currency: str = "PHP"
    destination: Optional[PayoutDestination] = None

    model_config = ConfigDict(from_attributes=True)


class WithdrawalRecord(BaseModel):
    id: UUID
    participant_id: UUID
    credits: Decimal
    amount: Decimal
    currency: str
    credit_rate: Decimal
    status: WithdrawalStatus
    source: WithdrawalSource
    requested_at: datetime
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    processing_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    transaction_id: Optional[str] = None
    provider: Optional[str] = None
    error: Optional[str] = None
    destination: Optional[PayoutDestination] = None
    note: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    def reserves_balance(self) -> bool:
        return self.status in RESERVED_STATUSES

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, status: WithdrawalStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    def credits_from_amount(self) -> Decimal:
        return self.amount / self.credit_rate


class LedgerBalance(BaseModel):
    participant_id: UUID
    earned_credits: Decimal
    reserved_credits: Decimal
    raw_credits: Decimal
    available_credits: Decimal
    integrity_ok: bool = True


class EligibilityResult(BaseModel):
    ok: bool
    reason: Optional[IneligibleReason] = None
    detail: Optional[str] = None
    available_credits: Decimal = Decimal("0")


class PayoutError(BaseModel):
    participant_id: UUID
    kind: ErrorKind
    message: str
    withdrawal_id: Optional[UUID] = None

    model_config = ConfigDict(frozen=True)


class PayoutReport(BaseModel):
    id: UUID
    report_type: str = "automatic_payout"
    period_start: date
    period_end: date
    created_at: datetime
    dry_run: bool = False
    withdrawals: tuple[WithdrawalRecord, ...] = ()
    errors: tuple[PayoutError, ...] = ()
    status_counts: dict[str, int] = Field(default_factory=dict)
    totals_by_currency: dict[str, Decimal] = Field(default_factory=dict)
    notes: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class CashoutRequest(BaseModel):
    credits: Optional[Decimal] = Field(default=None, description="Credits to cash out; all available if omitted")

    model_config = ConfigDict(json_schema_extra={
        "example": {"credits": 10}
    })


class ApproveWithdrawalRequest(BaseModel):
    performed_by: str


class RejectWithdrawalRequest(BaseModel):
    performed_by: str
    reason: str = Field(..., description="Reason shown to the tutor")


class ReconcileWithdrawalRequest(BaseModel):
    performed_by: str
    succeeded: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None


class WithdrawalListResponse(BaseModel):
    withdrawals: list[WithdrawalRecord]
    total_count: int


class ReportListResponse(BaseModel):
    reports: list[PayoutReport]
    total_count: int
    limit: int
    offset: int


class PayoutStats(BaseModel):
    counts_by_status: dict[str, int]
    amounts_by_status: dict[str, dict[str, Decimal]]
    stale_processing: int
