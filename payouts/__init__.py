"""
Tutor Payout Reconciliation

This module provides:
- Available-credit computation from successful sessions and reserved withdrawals
- Payout eligibility checks (balance and payout destination)
- Withdrawal lifecycle: pending → approved → processing → completed / failed
- Scheduled payout sweeps with an immutable report per run
"""

from .models import (
    WithdrawalStatus,
    PayoutMethod,
    EarningEvent,
    Participant,
    PayoutDestination,
    WithdrawalRecord,
    PayoutReport,
)
from .ledger import LedgerReader
from .eligibility import PayoutEligibilityChecker
from .executor import PayoutExecutor

__all__ = [
    "WithdrawalStatus",
    "PayoutMethod",
    "EarningEvent",
    "Participant",
    "PayoutDestination",
    "WithdrawalRecord",
    "PayoutReport",
    "LedgerReader",
    "PayoutEligibilityChecker",
    "PayoutExecutor",
]
