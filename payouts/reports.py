import calendar
from collections import Counter
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional
from uuid import uuid4

from .models import PayoutError, PayoutReport, PayoutStats, WithdrawalRecord, WithdrawalStatus


def is_payout_day(day: date) -> bool:
    """Payouts run on the 15th and on the last day of each month."""
    last_day = calendar.monthrange(day.year, day.month)[1]
    return day.day in (15, last_day)


def payout_period(day: date) -> tuple[date, date]:
    """Half-month period containing ``day``: 1st-15th or 16th-month end."""
    if day.day <= 15:
        return day.replace(day=1), day.replace(day=15)
    last_day = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=16), day.replace(day=last_day)


def build_report(
    withdrawals: Iterable[WithdrawalRecord],
    errors: Iterable[PayoutError],
    period: tuple[date, date],
    *,
    report_type: str = "automatic_payout",
    dry_run: bool = False,
    notes: Optional[str] = None,
) -> PayoutReport:
    withdrawals = tuple(withdrawals)
    status_counts = Counter(w.status.value for w in withdrawals)

    totals: dict[str, Decimal] = {}
    for w in withdrawals:
        if w.status == WithdrawalStatus.COMPLETED or dry_run:
            totals[w.currency] = totals.get(w.currency, Decimal("0")) + w.amount

    return PayoutReport(
        id=uuid4(),
        report_type=report_type,
        period_start=period[0],
        period_end=period[1],
        created_at=datetime.now(timezone.utc),
        dry_run=dry_run,
        withdrawals=withdrawals,
        errors=tuple(errors),
        status_counts=dict(status_counts),
        totals_by_currency=totals,
        notes=notes,
    )


def compute_stats(storage, ledger) -> PayoutStats:
    """Withdrawal counts and amounts per status, plus stuck ``processing`` rows."""
    counts: Counter = Counter()
    amounts: dict[str, dict[str, Decimal]] = {}
    for w in storage.list_withdrawals():
        counts[w.status.value] += 1
        per_currency = amounts.setdefault(w.status.value, {})
        per_currency[w.currency] = per_currency.get(w.currency, Decimal("0")) + w.amount

    return PayoutStats(
        counts_by_status=dict(counts),
        amounts_by_status=amounts,
        stale_processing=len(ledger.find_stale_withdrawals()),
    )
