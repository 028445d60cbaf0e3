import re
from decimal import Decimal
from typing import Optional

from .config import Settings
from .ledger import LedgerReader
from .models import (
    EligibilityResult,
    IneligibleReason,
    Participant,
    PayoutDestination,
    PayoutMethod,
)


def normalize_ewallet_number(number: str) -> str:
    return number.replace("-", "").replace(" ", "")


def destination_problems(destination: Optional[PayoutDestination], settings: Settings) -> list[str]:
    """List what is missing or malformed in a payout destination."""
    if destination is None:
        return ["no payout destination configured"]

    problems = []
    if destination.method == PayoutMethod.BANK:
        for field in ("account_number", "account_name", "bank_name"):
            if not (getattr(destination, field) or "").strip():
                problems.append(f"missing {field}")
    elif destination.method == PayoutMethod.EWALLET:
        if not (destination.ewallet_name or "").strip():
            problems.append("missing ewallet_name")
        number = normalize_ewallet_number(destination.ewallet_number or "")
        if not number:
            problems.append("missing ewallet_number")
        elif not re.match(settings.ewallet_number_pattern, number):
            problems.append("invalid ewallet_number")
    elif destination.method == PayoutMethod.CONNECTED_ACCOUNT:
        if not (destination.connected_account_id or "").strip():
            problems.append("missing connected_account_id")
        elif not destination.connected_account_onboarded:
            problems.append("connected account not onboarded")
    return problems


class PayoutEligibilityChecker:
    def __init__(self, ledger: LedgerReader, settings: Optional[Settings] = None):
        self.ledger = ledger
        self.settings = settings or ledger.settings

    def check_eligibility(self, participant: Participant, requested_credits: Decimal) -> EligibilityResult:
        available = self.ledger.compute_available_credits(participant.id)

        if requested_credits <= 0 or requested_credits > available:
            return EligibilityResult(
                ok=False,
                reason=IneligibleReason.INSUFFICIENT_BALANCE,
                detail=f"requested {requested_credits} credits, {available} available",
                available_credits=available,
            )

        problems = destination_problems(participant.destination, self.settings)
        if problems:
            return EligibilityResult(
                ok=False,
                reason=IneligibleReason.INCOMPLETE_PAYMENT_INFO,
                detail="; ".join(problems),
                available_credits=available,
            )

        return EligibilityResult(ok=True, available_credits=available)
