"""
Unit Tests for the LedgerReader

Tests cover:
1. Earnings from successful sessions only
2. Reserved vs released withdrawal statuses
3. Conversion with the rate stored on each withdrawal
4. Negative balances (clamped and logged)
5. Stale processing withdrawals
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from payouts.errors import ValidationError
from payouts.ledger import LedgerReader
from payouts.models import (
    EarningEvent,
    SessionStatus,
    WithdrawalRecord,
    WithdrawalSource,
    WithdrawalStatus,
)

from payouts.tests.helpers import TUTOR_ID, add_tutor


def make_withdrawal(credits, status, rate="90", currency="PHP", processing_at=None) -> WithdrawalRecord:
    credits = Decimal(credits)
    rate = Decimal(rate)
    return WithdrawalRecord(
        id=uuid4(),
        participant_id=TUTOR_ID,
        credits=credits,
        amount=credits * rate,
        currency=currency,
        credit_rate=rate,
        status=status,
        source=WithdrawalSource.MANUAL,
        requested_at=datetime.now(timezone.utc),
        processing_at=processing_at,
    )


class TestEarnings:
    """Tests for the earned side of the balance."""

    def test_ten_successful_sessions(self, storage, settings):
        """Ten one-credit sessions and no withdrawals give ten credits."""
        add_tutor(storage, sessions=10)
        ledger = LedgerReader(storage, settings)

        assert ledger.compute_available_credits(TUTOR_ID) == Decimal("10")

    def test_only_successful_sessions_count(self, storage, settings):
        add_tutor(storage, sessions=3)
        for status in (SessionStatus.SCHEDULED, SessionStatus.CONFIRMED, SessionStatus.CANCELLED):
            storage.add_earning_event(EarningEvent(
                id=uuid4(), participant_id=TUTOR_ID, credits=Decimal("5"), status=status,
            ))

        balance = LedgerReader(storage, settings).compute_balance(TUTOR_ID)

        assert balance.earned_credits == Decimal("3")
        assert balance.available_credits == Decimal("3")

    def test_other_participants_are_ignored(self, storage, settings):
        add_tutor(storage, sessions=2)
        add_tutor(storage, sessions=7, participant_id=UUID("660e8400-e29b-41d4-a716-446655440001"))

        assert LedgerReader(storage, settings).compute_available_credits(TUTOR_ID) == Decimal("2")

    def test_unknown_participant(self, storage, settings):
        with pytest.raises(ValidationError):
            LedgerReader(storage, settings).compute_available_credits(uuid4())


class TestReservations:
    """Tests for how withdrawals reduce the balance."""

    @pytest.mark.parametrize("status", [
        WithdrawalStatus.PENDING,
        WithdrawalStatus.APPROVED,
        WithdrawalStatus.PROCESSING,
        WithdrawalStatus.COMPLETED,
    ])
    def test_reserved_statuses_reduce_balance(self, storage, settings, status):
        add_tutor(storage, sessions=10)
        storage.insert_withdrawal(make_withdrawal("4", status))

        assert LedgerReader(storage, settings).compute_available_credits(TUTOR_ID) == Decimal("6")

    @pytest.mark.parametrize("status", [WithdrawalStatus.FAILED, WithdrawalStatus.REJECTED])
    def test_released_statuses_do_not_reduce_balance(self, storage, settings, status):
        add_tutor(storage, sessions=10)
        storage.insert_withdrawal(make_withdrawal("4", status))

        assert LedgerReader(storage, settings).compute_available_credits(TUTOR_ID) == Decimal("10")

    def test_each_withdrawal_uses_its_own_rate(self, storage, settings):
        """A PHP 140 withdrawal made at 140/credit is one credit, not 140/90."""
        add_tutor(storage, sessions=10)
        storage.insert_withdrawal(make_withdrawal("1", WithdrawalStatus.COMPLETED, rate="140"))
        storage.insert_withdrawal(make_withdrawal("2", WithdrawalStatus.COMPLETED, rate="1.5", currency="USD"))

        balance = LedgerReader(storage, settings).compute_balance(TUTOR_ID)

        assert balance.reserved_credits == Decimal("3")
        assert balance.available_credits == Decimal("7")


class TestIntegrity:
    """Tests for negative balances and stuck withdrawals."""

    def test_negative_balance_is_clamped_and_logged(self, storage, settings, caplog):
        add_tutor(storage, sessions=2)
        storage.insert_withdrawal(make_withdrawal("5", WithdrawalStatus.COMPLETED))

        with caplog.at_level(logging.ERROR, logger="payouts.ledger"):
            balance = LedgerReader(storage, settings).compute_balance(TUTOR_ID)

        assert balance.raw_credits == Decimal("-3")
        assert balance.available_credits == Decimal("0")
        assert balance.integrity_ok is False
        assert "integrity" in caplog.text

    def test_available_credits_never_negative(self, storage, settings):
        add_tutor(storage, sessions=0)
        storage.insert_withdrawal(make_withdrawal("1", WithdrawalStatus.PENDING))

        assert LedgerReader(storage, settings).compute_available_credits(TUTOR_ID) == Decimal("0")

    def test_find_stale_withdrawals(self, storage, settings):
        add_tutor(storage, sessions=10)
        now = datetime.now(timezone.utc)
        stale = storage.insert_withdrawal(make_withdrawal(
            "1", WithdrawalStatus.PROCESSING, processing_at=now - timedelta(hours=3),
        ))
        storage.insert_withdrawal(make_withdrawal(
            "1", WithdrawalStatus.PROCESSING, processing_at=now - timedelta(minutes=5),
        ))
        storage.insert_withdrawal(make_withdrawal("1", WithdrawalStatus.COMPLETED))

        found = LedgerReader(storage, settings).find_stale_withdrawals(now)

        assert [w.id for w in found] == [stale.id]
