"""
Payment gateway adapters.

Every gateway exposes one capability, ``transfer(amount, currency,
destination, reference)``, and reports any failure (including timeouts) as a
``GatewayError``. Retrying is left to the caller.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import httpx
import stripe

from .config import Settings, get_settings
from .errors import GatewayError
from .models import PayoutDestination, PayoutMethod

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferResult:
    transaction_id: str
    provider: str


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGateway(ABC):
    name: str = "gateway"

    @abstractmethod
    def transfer(
        self,
        amount: Decimal,
        currency: str,
        destination: PayoutDestination,
        *,
        reference: str,
    ) -> TransferResult:
        ...


class StripeGateway(PaymentGateway):
    """Stripe Connect transfers to a tutor's connected account."""

    name = "stripe"

    def __init__(self, api_key: str, timeout: float = 30.0, client: Optional[stripe.StripeClient] = None):
        # Timeout and retry policy live on this client; stripe's module globals are left alone.
        self.client = client or stripe.StripeClient(
            api_key,
            http_client=stripe.RequestsClient(timeout=timeout),
            max_network_retries=0,
        )

    def transfer(self, amount, currency, destination, *, reference):
        if not destination.connected_account_id:
            raise GatewayError("Destination has no connected account", provider=self.name)
        try:
            transfer = self.client.v1.transfers.create(
                params={
                    "amount": to_minor_units(amount),
                    "currency": currency.lower(),
                    "destination": destination.connected_account_id,
                    "description": f"Payout {reference}",
                },
                options={"idempotency_key": reference},
            )
        except stripe.APIConnectionError as e:
            # Network failures, request timeouts included.
            raise GatewayError(f"Stripe unreachable: {e.user_message or e}", timed_out=True, provider=self.name) from e
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe transfer failed: {e.user_message or e}", provider=self.name) from e

        logger.info("Stripe transfer %s created for %s %s", transfer.id, amount, currency)
        return TransferResult(transaction_id=transfer.id, provider=self.name)


class PayMongoGateway(PaymentGateway):
    """Regional payouts to bank accounts and e-wallets."""

    name = "paymongo"

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paymongo.com/v1",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.client = httpx.Client(
            base_url=base_url,
            auth=(secret_key, ""),
            timeout=timeout,
            transport=transport,
        )

    def _destination_payload(self, destination: PayoutDestination) -> dict:
        if destination.method == PayoutMethod.EWALLET:
            return {
                "type": "gcash",
                "account_name": destination.ewallet_name,
                "account_number": destination.ewallet_number,
            }
        if destination.method == PayoutMethod.BANK:
            return {
                "type": "bank",
                "bank_name": destination.bank_name,
                "bank_branch": destination.bank_branch,
                "account_name": destination.account_name,
                "account_number": destination.account_number,
            }
        raise GatewayError(f"PayMongo cannot pay out to {destination.method.value}", provider=self.name)

    def transfer(self, amount, currency, destination, *, reference):
        payload = {
            "data": {
                "attributes": {
                    "amount": to_minor_units(amount),
                    "currency": currency.upper(),
                    "description": f"Payout {reference}",
                    "reference_number": reference,
                    "destination": self._destination_payload(destination),
                }
            }
        }
        try:
            response = self.client.post("/payouts", json=payload, headers={"Idempotency-Key": reference})
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise GatewayError(f"PayMongo request timed out: {e}", timed_out=True, provider=self.name) from e
        except httpx.HTTPStatusError as e:
            raise GatewayError(
                f"PayMongo payout failed: HTTP {e.response.status_code} {_paymongo_error_detail(e.response)}",
                provider=self.name,
            ) from e
        except httpx.HTTPError as e:
            raise GatewayError(f"PayMongo request failed: {e}", provider=self.name) from e

        # The payout was accepted; from here on a failure means we don't know its id.
        try:
            transaction_id = response.json()["data"]["id"]
        except (ValueError, KeyError, TypeError) as e:
            raise GatewayError(
                f"PayMongo accepted the payout (HTTP {response.status_code}) "
                f"but the response had no payout id: {response.text[:200]}",
                provider=self.name,
                outcome_unknown=True,
            ) from e
        if not isinstance(transaction_id, str) or not transaction_id:
            raise GatewayError(
                f"PayMongo accepted the payout but returned an invalid payout id: {transaction_id!r}",
                provider=self.name,
                outcome_unknown=True,
            )
        logger.info("PayMongo payout %s created for %s %s", transaction_id, amount, currency)
        return TransferResult(transaction_id=transaction_id, provider=self.name)


def _paymongo_error_detail(response: httpx.Response) -> str:
    try:
        errors = response.json().get("errors") or []
    except ValueError:
        return response.text
    return "; ".join(e.get("detail", "") for e in errors) or response.text


class GatewayRouter(PaymentGateway):
    """Picks the provider for a destination: connected accounts go through
    Stripe, bank and e-wallet payouts through PayMongo."""

    name = "router"

    def __init__(self, gateways: dict[PayoutMethod, PaymentGateway]):
        self.gateways = gateways

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "GatewayRouter":
        settings = settings or get_settings()
        gateways: dict[PayoutMethod, PaymentGateway] = {}
        if settings.stripe_secret_key:
            gateways[PayoutMethod.CONNECTED_ACCOUNT] = StripeGateway(
                settings.stripe_secret_key, timeout=settings.gateway_timeout_seconds
            )
        if settings.paymongo_secret_key:
            paymongo = PayMongoGateway(
                settings.paymongo_secret_key,
                base_url=settings.paymongo_base_url,
                timeout=settings.gateway_timeout_seconds,
            )
            gateways[PayoutMethod.BANK] = paymongo
            gateways[PayoutMethod.EWALLET] = paymongo
        return cls(gateways)

    def transfer(self, amount, currency, destination, *, reference):
        gateway = self.gateways.get(destination.method)
        if gateway is None:
            raise GatewayError(f"No payment gateway configured for {destination.method.value}")
        return gateway.transfer(amount, currency, destination, reference=reference)
