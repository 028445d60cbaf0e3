from typing import Optional
from uuid import UUID

from .models import ErrorKind, IneligibleReason


class PayoutServiceError(Exception):
    kind: Optional[ErrorKind] = None


class ValidationError(PayoutServiceError):
    """Bad or missing input. Never retried."""

    kind = ErrorKind.VALIDATION


class IneligibleError(PayoutServiceError):
    """The participant cannot be paid out right now."""

    kind = ErrorKind.INELIGIBLE

    def __init__(self, reason: IneligibleReason, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class GatewayError(PayoutServiceError):
    """A transfer call failed or timed out.

    ``outcome_unknown`` means the provider may have moved the money (for
    example it answered 2xx with a body we could not read). Such transfers
    are never retried or marked failed; they wait for manual reconciliation.
    """

    kind = ErrorKind.GATEWAY

    def __init__(
        self,
        message: str,
        *,
        timed_out: bool = False,
        provider: Optional[str] = None,
        outcome_unknown: bool = False,
        withdrawal_id: Optional[UUID] = None,
    ):
        self.timed_out = timed_out
        self.provider = provider
        self.outcome_unknown = outcome_unknown
        self.withdrawal_id = withdrawal_id
        super().__init__(message)


class IntegrityError(PayoutServiceError):
    """Ledger data that needs manual reconciliation."""

    kind = ErrorKind.INTEGRITY


class WithdrawalNotFoundError(PayoutServiceError):
    pass


class InvalidStateTransitionError(PayoutServiceError):
    pass
