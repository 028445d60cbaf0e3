import logging
import time
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Callable, Optional
from uuid import UUID, uuid4

from .config import Settings, get_settings
from .eligibility import PayoutEligibilityChecker, destination_problems
from .errors import (
    GatewayError,
    IneligibleError,
    IntegrityError,
    InvalidStateTransitionError,
    PayoutServiceError,
    ValidationError,
    WithdrawalNotFoundError,
)
from .gateways import PaymentGateway
from .ledger import LedgerReader
from .models import (
    ErrorKind,
    IneligibleReason,
    Participant,
    PayoutError,
    PayoutReport,
    WithdrawalRecord,
    WithdrawalSource,
    WithdrawalStatus,
)
from .reports import build_report, is_payout_day, payout_period
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

CREDIT_QUANTUM = Decimal("0.01")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PayoutExecutor:
    """Creates withdrawals, moves them through their lifecycle and runs the
    scheduled payout sweep.

    Balance is reserved by inserting the withdrawal (``pending`` or
    ``processing``) while holding the participant's lock; the gateway is only
    called after the lock is released. A failed transfer moves the record to
    ``failed``, which releases the reservation. A transfer whose outcome is
    unknown keeps the record in ``processing`` until it is reconciled.
    """

    def __init__(
        self,
        storage: InMemoryStorage,
        gateway: PaymentGateway,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.storage = storage
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.ledger = LedgerReader(storage, self.settings)
        self.checker = PayoutEligibilityChecker(self.ledger, self.settings)
        self.sleep = sleep

    # Payout entry points

    def execute_payout(
        self,
        participant_id: UUID,
        credits,
        *,
        source: WithdrawalSource = WithdrawalSource.SWEEP,
        note: Optional[str] = None,
    ) -> WithdrawalRecord:
        """Reserve, transfer and settle a payout in one go.

        Returns the record in its terminal state: ``completed`` or, when the
        gateway keeps failing, ``failed``. When the outcome of the transfer is
        unknown the record stays in ``processing`` and a ``GatewayError`` with
        ``outcome_unknown`` set is raised.
        """
        participant = self._get_participant(participant_id)
        credits = self._normalize_credits(credits)
        record = self._reserve(participant, credits, WithdrawalStatus.PROCESSING, source, note)
        return self._transfer(record)

    def request_cashout(self, participant_id: UUID, credits=None) -> WithdrawalRecord:
        """User-initiated cash-out; the record waits in ``pending`` for approval."""
        participant = self._get_participant(participant_id)
        if credits is None:
            credits = self.ledger.compute_available_credits(participant_id).quantize(
                CREDIT_QUANTUM, rounding=ROUND_DOWN
            )
            if credits <= 0:
                raise IneligibleError(IneligibleReason.INSUFFICIENT_BALANCE, "No credits available to cash out")
        credits = self._normalize_credits(credits)
        return self._reserve(
            participant, credits, WithdrawalStatus.PENDING, WithdrawalSource.CASHOUT,
            note=f"Cash out ({credits} credits)",
        )

    # Approval workflow

    def approve_withdrawal(self, withdrawal_id: UUID, approved_by: str) -> WithdrawalRecord:
        return self._transition(
            withdrawal_id, WithdrawalStatus.APPROVED,
            expected={WithdrawalStatus.PENDING},
            approved_by=approved_by, approved_at=_utcnow(),
        )

    def reject_withdrawal(self, withdrawal_id: UUID, rejected_by: str, reason: str) -> WithdrawalRecord:
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")
        return self._transition(
            withdrawal_id, WithdrawalStatus.REJECTED,
            rejected_by=rejected_by, rejected_at=_utcnow(), rejection_reason=reason.strip(),
        )

    def process_withdrawal(self, withdrawal_id: UUID) -> WithdrawalRecord:
        """Pay out an approved withdrawal to the participant's current destination."""
        record = self.get_withdrawal(withdrawal_id)
        if record.status != WithdrawalStatus.APPROVED:
            raise InvalidStateTransitionError(
                f"Withdrawal must be approved before processing. Current status: {record.status.value}"
            )
        participant = self._get_participant(record.participant_id)
        problems = destination_problems(participant.destination, self.settings)
        if problems:
            raise IneligibleError(IneligibleReason.INCOMPLETE_PAYMENT_INFO, "; ".join(problems))

        record = self._transition(
            withdrawal_id, WithdrawalStatus.PROCESSING,
            expected={WithdrawalStatus.APPROVED},
            processing_at=_utcnow(), destination=participant.destination.model_dump(),
        )
        return self._transfer(record)

    def reconcile_withdrawal(
        self,
        withdrawal_id: UUID,
        succeeded: bool,
        *,
        performed_by: str,
        transaction_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> WithdrawalRecord:
        """Resolve a withdrawal left in ``processing`` by hand."""
        record = self.get_withdrawal(withdrawal_id)
        note = _append_note(record.note, f"Manually reconciled by {performed_by}")
        if succeeded:
            if not transaction_id:
                raise ValidationError("transaction_id is required to mark a withdrawal completed")
            return self._transition(
                withdrawal_id, WithdrawalStatus.COMPLETED,
                expected={WithdrawalStatus.PROCESSING},
                processed_at=_utcnow(), transaction_id=transaction_id, error=None, note=note,
            )
        return self._transition(
            withdrawal_id, WithdrawalStatus.FAILED,
            expected={WithdrawalStatus.PROCESSING},
            error=error or "Marked failed during manual reconciliation", note=note,
        )

    def get_withdrawal(self, withdrawal_id: UUID) -> WithdrawalRecord:
        record = self.storage.get_withdrawal(withdrawal_id)
        if record is None:
            raise WithdrawalNotFoundError(f"Withdrawal {withdrawal_id} not found")
        return record

    # Batch sweep

    def run_batch_sweep(
        self,
        *,
        today: Optional[date] = None,
        dry_run: bool = False,
        force: bool = False,
        notes: Optional[str] = None,
    ) -> Optional[PayoutReport]:
        """Pay every participant their available credits.

        Returns None without doing anything when ``today`` is not a payout
        day, unless ``force`` is set. Per-participant failures end up in the
        report's error list; the sweep always visits every participant.
        """
        today = today or _utcnow().date()
        if not force and not is_payout_day(today):
            logger.info("Skipping payout sweep: %s is not a payout day", today)
            return None

        now = _utcnow()
        withdrawals: list[WithdrawalRecord] = []
        errors: list[PayoutError] = []

        for participant in self.storage.iter_participants():
            try:
                record = self._sweep_participant(participant, now, dry_run)
            except PayoutServiceError as e:
                logger.warning("Payout sweep error for participant %s: %s", participant.id, e)
                withdrawal_id = getattr(e, "withdrawal_id", None)
                if withdrawal_id is not None:
                    withdrawals.append(self.get_withdrawal(withdrawal_id))
                errors.append(PayoutError(
                    participant_id=participant.id,
                    kind=e.kind or ErrorKind.VALIDATION,
                    message=str(e),
                    withdrawal_id=withdrawal_id,
                ))
                continue
            except Exception as e:
                logger.exception("Unexpected payout sweep error for participant %s", participant.id)
                errors.append(PayoutError(
                    participant_id=participant.id,
                    kind=ErrorKind.INTERNAL,
                    message=f"Unexpected error: {e!r}",
                ))
                continue

            if record is None:
                continue
            withdrawals.append(record)
            if record.status == WithdrawalStatus.FAILED:
                errors.append(PayoutError(
                    participant_id=participant.id,
                    kind=ErrorKind.GATEWAY,
                    message=record.error or "transfer failed",
                    withdrawal_id=record.id,
                ))

        report = build_report(
            withdrawals, errors, payout_period(today),
            dry_run=dry_run,
            notes=notes or f"Automatic payout processing (force={force}, dry_run={dry_run})",
        )
        self.storage.save_report(report)
        logger.info(
            "Payout sweep finished: report=%s statuses=%s errors=%d",
            report.id, report.status_counts, len(report.errors),
        )
        return report

    def _sweep_participant(
        self, participant: Participant, now: datetime, dry_run: bool
    ) -> Optional[WithdrawalRecord]:
        if participant.destination is None:
            logger.debug("Participant %s has no payout destination, skipping", participant.id)
            return None

        stale = self.ledger.find_stale_withdrawals(now, participant.id)
        if stale:
            raise IntegrityError(
                f"{len(stale)} withdrawal(s) stuck in processing; manual reconciliation required"
            )

        balance = self.ledger.compute_balance(participant.id)
        if not balance.integrity_ok:
            raise IntegrityError(f"Negative ledger balance {balance.raw_credits}; manual reconciliation required")

        credits = balance.available_credits.quantize(CREDIT_QUANTUM, rounding=ROUND_DOWN)
        if credits < self.settings.minimum_payout_credits:
            return None

        if dry_run:
            result = self.checker.check_eligibility(participant, credits)
            if not result.ok:
                raise IneligibleError(result.reason, result.detail)
            return self._new_record(
                participant, credits, WithdrawalStatus.PENDING, WithdrawalSource.SWEEP, "Would transfer"
            )

        return self.execute_payout(
            participant.id, credits, source=WithdrawalSource.SWEEP, note="Automatic scheduled payout"
        )

    # Internals

    def _get_participant(self, participant_id: UUID) -> Participant:
        if participant_id is None:
            raise ValidationError("Missing participant id")
        participant = self.storage.get_participant(participant_id)
        if participant is None:
            raise ValidationError(f"Participant {participant_id} not found")
        return participant

    def _normalize_credits(self, credits) -> Decimal:
        try:
            value = credits if isinstance(credits, Decimal) else Decimal(str(credits))
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(f"Invalid credit amount: {credits!r}") from e
        if not value.is_finite() or value <= 0:
            raise ValidationError(f"Credit amount must be positive, got {credits}")
        if value != value.quantize(CREDIT_QUANTUM):
            raise ValidationError(f"Credit amount {credits} has more than two decimal places")
        return value

    def _rate_for(self, currency: str) -> Decimal:
        try:
            return self.settings.rate_for(currency)
        except KeyError as e:
            raise ValidationError(str(e.args[0])) from e

    def _new_record(
        self,
        participant: Participant,
        credits: Decimal,
        status: WithdrawalStatus,
        source: WithdrawalSource,
        note: Optional[str],
    ) -> WithdrawalRecord:
        rate = self._rate_for(participant.settlement_currency)
        now = _utcnow()
        return WithdrawalRecord(
            id=uuid4(),
            participant_id=participant.id,
            credits=credits,
            amount=credits * rate,
            currency=participant.settlement_currency.upper(),
            credit_rate=rate,
            status=status,
            source=source,
            requested_at=now,
            processing_at=now if status == WithdrawalStatus.PROCESSING else None,
            destination=participant.destination,
            note=note,
        )

    def _reserve(
        self,
        participant: Participant,
        credits: Decimal,
        status: WithdrawalStatus,
        source: WithdrawalSource,
        note: Optional[str],
    ) -> WithdrawalRecord:
        with self.storage.participant_lock(participant.id):
            result = self.checker.check_eligibility(participant, credits)
            if not result.ok:
                logger.info(
                    "Payout of %s credits refused for participant %s: %s (%s)",
                    credits, participant.id, result.reason.value, result.detail,
                )
                raise IneligibleError(result.reason, result.detail)
            record = self.storage.insert_withdrawal(
                self._new_record(participant, credits, status, source, note)
            )

        logger.info(
            "Withdrawal %s created for participant %s: %s credits = %s %s (%s)",
            record.id, participant.id, credits, record.amount, record.currency, status.value,
        )
        return record

    def _transition(
        self,
        withdrawal_id: UUID,
        status: WithdrawalStatus,
        expected: Optional[set] = None,
        **changes,
    ) -> WithdrawalRecord:
        record = self.get_withdrawal(withdrawal_id)
        with self.storage.participant_lock(record.participant_id):
            record = self.get_withdrawal(withdrawal_id)
            if (expected is not None and record.status not in expected) or not record.can_transition_to(status):
                raise InvalidStateTransitionError(
                    f"Cannot move withdrawal {withdrawal_id} from {record.status.value} to {status.value}"
                )
            updated = self.storage.update_withdrawal(withdrawal_id, status=status, **changes)

        logger.info("Withdrawal %s: %s -> %s", withdrawal_id, record.status.value, status.value)
        return updated

    def _transfer(self, record: WithdrawalRecord) -> WithdrawalRecord:
        attempts = self.settings.gateway_max_retries + 1
        last_error: Optional[GatewayError] = None

        for attempt in range(1, attempts + 1):
            try:
                result = self.gateway.transfer(
                    record.amount, record.currency, record.destination, reference=str(record.id)
                )
            except GatewayError as e:
                if e.outcome_unknown:
                    self._hold_for_reconciliation(record, e)
                last_error = e
                if attempt < attempts:
                    delay = self.settings.gateway_retry_backoff_seconds * (2 ** (attempt - 1))
                    logger.warning(
                        "Transfer for withdrawal %s failed (attempt %d/%d): %s; retrying in %.1fs",
                        record.id, attempt, attempts, e, delay,
                    )
                    self.sleep(delay)
                continue
            except Exception as e:
                self._hold_for_reconciliation(
                    record,
                    GatewayError(f"Unexpected gateway error: {e!r}", outcome_unknown=True),
                    cause=e,
                )

            return self._transition(
                record.id, WithdrawalStatus.COMPLETED,
                processed_at=_utcnow(),
                transaction_id=result.transaction_id,
                provider=result.provider,
            )

        logger.error("Transfer for withdrawal %s failed after %d attempt(s): %s", record.id, attempts, last_error)
        return self._transition(
            record.id, WithdrawalStatus.FAILED,
            error=str(last_error),
            provider=last_error.provider,
        )

    def _hold_for_reconciliation(
        self, record: WithdrawalRecord, error: GatewayError, cause: Optional[BaseException] = None
    ) -> None:
        """Leave the record in ``processing`` with the error noted, then raise.

        The money may already have moved, so the reservation must stand until
        someone checks the provider and calls ``reconcile_withdrawal``.
        """
        with self.storage.participant_lock(record.participant_id):
            self.storage.update_withdrawal(record.id, error=str(error), provider=error.provider)
        logger.error(
            "Transfer for withdrawal %s has an unknown outcome, left in processing: %s",
            record.id, error, exc_info=cause is not None,
        )
        error.withdrawal_id = record.id
        if cause is None:
            raise error
        raise error from cause


def _append_note(note: Optional[str], addition: str) -> str:
    return f"{note} | {addition}" if note else addition
