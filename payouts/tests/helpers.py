from decimal import Decimal
from uuid import UUID, uuid4

from payouts.errors import GatewayError
from payouts.gateways import PaymentGateway, TransferResult
from payouts.models import (
    EarningEvent,
    Participant,
    PayoutDestination,
    PayoutMethod,
    SessionStatus,
)
from payouts.storage import InMemoryStorage


TUTOR_ID = UUID("550e8400-e29b-41d4-a716-446655440000")


class FakeGateway(PaymentGateway):
    """Records transfers; fails for listed accounts or the next ``fail_times`` calls."""

    name = "fake"

    def __init__(self, fail_times: int = 0, fail_accounts=()):
        self.fail_times = fail_times
        self.fail_accounts = set(fail_accounts)
        self.calls = []

    def transfer(self, amount, currency, destination, *, reference):
        self.calls.append((amount, currency, destination, reference))
        account = (
            destination.connected_account_id
            or destination.ewallet_number
            or destination.account_number
        )
        if account in self.fail_accounts:
            raise GatewayError(f"transfer to {account} declined", provider=self.name)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise GatewayError("gateway unavailable", provider=self.name)
        return TransferResult(transaction_id=f"tr_{len(self.calls)}", provider=self.name)


def stripe_destination(account_id: str = "acct_123") -> PayoutDestination:
    return PayoutDestination(
        method=PayoutMethod.CONNECTED_ACCOUNT,
        connected_account_id=account_id,
        connected_account_onboarded=True,
    )


def add_tutor(
    storage: InMemoryStorage,
    sessions: int = 10,
    credits_per_session: str = "1",
    participant_id: UUID = TUTOR_ID,
    currency: str = "PHP",
    destination=None,
    with_destination: bool = True,
) -> Participant:
    if destination is None and with_destination:
        destination = stripe_destination(f"acct_{participant_id.hex[:8]}")
    participant = Participant(
        id=participant_id,
        name="Test Tutor",
        email=f"{participant_id.hex[:8]}@example.com",
        settlement_currency=currency,
        destination=destination,
    )
    storage.add_participant(participant)
    for _ in range(sessions):
        storage.add_earning_event(EarningEvent(
            id=uuid4(),
            participant_id=participant_id,
            credits=Decimal(credits_per_session),
            status=SessionStatus.SUCCESSFUL,
        ))
    return participant


