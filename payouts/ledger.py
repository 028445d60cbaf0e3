import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from .config import Settings, get_settings
from .errors import ValidationError
from .models import LedgerBalance, WithdrawalRecord, WithdrawalStatus
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class LedgerReader:
    """Read-only view of a participant's credit balance.

    available = successful earnings - reserved withdrawals, where every
    withdrawal is converted back to credits with the rate stored on it.
    """

    def __init__(self, storage: InMemoryStorage, settings: Optional[Settings] = None):
        self.storage = storage
        self.settings = settings or get_settings()

    def compute_balance(self, participant_id: UUID) -> LedgerBalance:
        if self.storage.get_participant(participant_id) is None:
            raise ValidationError(f"Participant {participant_id} not found")

        earned = sum(
            (e.credits for e in self.storage.earning_events_for(participant_id) if e.counts()),
            ZERO,
        )
        reserved = sum(
            (w.credits_from_amount() for w in self.storage.withdrawals_for(participant_id)
             if w.reserves_balance()),
            ZERO,
        )
        raw = earned - reserved
        integrity_ok = raw >= ZERO
        if not integrity_ok:
            logger.error(
                "Ledger integrity violation for participant %s: earned=%s reserved=%s balance=%s",
                participant_id, earned, reserved, raw,
            )

        return LedgerBalance(
            participant_id=participant_id,
            earned_credits=earned,
            reserved_credits=reserved,
            raw_credits=raw,
            available_credits=raw if integrity_ok else ZERO,
            integrity_ok=integrity_ok,
        )

    def compute_available_credits(self, participant_id: UUID) -> Decimal:
        return self.compute_balance(participant_id).available_credits

    def find_stale_withdrawals(
        self,
        now: Optional[datetime] = None,
        participant_id: Optional[UUID] = None,
    ) -> list[WithdrawalRecord]:
        """Withdrawals stuck in ``processing`` past the staleness threshold."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.settings.processing_stale_after
        stale = [
            w for w in self.storage.list_withdrawals(WithdrawalStatus.PROCESSING, participant_id)
            if (w.processing_at or w.requested_at) < cutoff
        ]
        for w in stale:
            logger.error(
                "Withdrawal %s for participant %s stuck in processing since %s",
                w.id, w.participant_id, w.processing_at or w.requested_at,
            )
        return stale
