import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID

from .models import (
    EarningEvent,
    Participant,
    PayoutDestination,
    PayoutMethod,
    PayoutReport,
    SessionStatus,
    WithdrawalRecord,
    WithdrawalStatus,
)


class InMemoryStorage:
    """Dict-backed store standing in for the participant, session, withdrawal
    and report tables.

    Records are kept as plain dicts and turned into models on the way out, so
    callers never hold a reference into the store. Writes that depend on the
    current balance must happen while holding ``participant_lock``.
    """

    def __init__(self, seed: bool = False):
        self.participants: dict[UUID, dict] = {}
        self.earning_events: dict[UUID, dict] = {}
        self.withdrawals: dict[UUID, dict] = {}
        self.reports: dict[UUID, PayoutReport] = {}
        self._locks: dict[UUID, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        if seed:
            self._seed_data()

    def _seed_data(self):
        now = datetime.now(timezone.utc)
        gcash_tutor = UUID("550e8400-e29b-41d4-a716-446655440000")
        stripe_tutor = UUID("660e8400-e29b-41d4-a716-446655440001")

        self.add_participant(Participant(
            id=gcash_tutor, name="Maria Santos", email="maria@example.com",
            settlement_currency="PHP",
            destination=PayoutDestination(
                method=PayoutMethod.EWALLET,
                ewallet_number="09171234567", ewallet_name="Maria Santos",
            ),
        ))
        self.add_participant(Participant(
            id=stripe_tutor, name="John Carter", email="john@example.com",
            settlement_currency="USD",
            destination=PayoutDestination(
                method=PayoutMethod.CONNECTED_ACCOUNT,
                connected_account_id="acct_demo_123", connected_account_onboarded=True,
            ),
        ))
        for n in range(4):
            self.add_earning_event(EarningEvent(
                id=UUID(int=n + 1), participant_id=gcash_tutor,
                credits=Decimal("1"), status=SessionStatus.SUCCESSFUL, completed_at=now,
            ))
        self.add_earning_event(EarningEvent(
            id=UUID(int=10), participant_id=stripe_tutor,
            credits=Decimal("2"), status=SessionStatus.SUCCESSFUL, completed_at=now,
        ))

    # Locking

    def participant_lock(self, participant_id: UUID) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(participant_id)
            if lock is None:
                lock = self._locks[participant_id] = threading.Lock()
            return lock

    # Participants and sessions (read-only to the payout core)

    def add_participant(self, participant: Participant) -> None:
        self.participants[participant.id] = participant.model_dump()

    def get_participant(self, participant_id: UUID) -> Optional[Participant]:
        data = self.participants.get(participant_id)
        return Participant(**data) if data else None

    def iter_participants(self) -> Iterator[Participant]:
        for data in list(self.participants.values()):
            yield Participant(**data)

    def add_earning_event(self, event: EarningEvent) -> None:
        self.earning_events[event.id] = event.model_dump()

    def earning_events_for(self, participant_id: UUID) -> list[EarningEvent]:
        return [
            EarningEvent(**e) for e in list(self.earning_events.values())
            if e["participant_id"] == participant_id
        ]

    # Withdrawals

    def insert_withdrawal(self, record: WithdrawalRecord) -> WithdrawalRecord:
        self.withdrawals[record.id] = record.model_dump()
        return record

    def get_withdrawal(self, withdrawal_id: UUID) -> Optional[WithdrawalRecord]:
        data = self.withdrawals.get(withdrawal_id)
        return WithdrawalRecord(**data) if data else None

    def update_withdrawal(self, withdrawal_id: UUID, **changes) -> WithdrawalRecord:
        data = self.withdrawals[withdrawal_id]
        data.update(changes)
        return WithdrawalRecord(**data)

    def withdrawals_for(self, participant_id: UUID) -> list[WithdrawalRecord]:
        return [
            WithdrawalRecord(**w) for w in list(self.withdrawals.values())
            if w["participant_id"] == participant_id
        ]

    def list_withdrawals(
        self,
        status: Optional[WithdrawalStatus] = None,
        participant_id: Optional[UUID] = None,
    ) -> list[WithdrawalRecord]:
        records = [
            WithdrawalRecord(**w) for w in list(self.withdrawals.values())
            if (status is None or w["status"] == status)
            and (participant_id is None or w["participant_id"] == participant_id)
        ]
        records.sort(key=lambda w: w.requested_at, reverse=True)
        return records

    # Reports

    def save_report(self, report: PayoutReport) -> PayoutReport:
        self.reports[report.id] = report
        return report

    def get_report(self, report_id: UUID) -> Optional[PayoutReport]:
        return self.reports.get(report_id)

    def list_reports(self, limit: int = 50, offset: int = 0) -> tuple[list[PayoutReport], int]:
        reports = sorted(self.reports.values(), key=lambda r: r.created_at, reverse=True)
        return reports[offset:offset + limit], len(reports)
