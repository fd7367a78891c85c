"""Common interface implemented by payment provider clients."""

from typing import Any, Protocol

from flightpay.models import PaymentHandle, PaymentProvider, RemoteStatus


class PaymentGateway(Protocol):
    """Operations the lifecycle services need from a payment provider.

    Amounts are always integer minor units. Clients never deduplicate
    registrations; the caller owns idempotency.
    """

    provider: PaymentProvider

    def authenticate(self) -> str: ...

    def register_order(
        self,
        token: str,
        merchant_order_id: str,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str] | None = None,
    ) -> str: ...

    def request_payment_handle(
        self,
        token: str,
        amount_minor: int,
        provider_order_id: str,
        billing_data: dict[str, Any],
        currency: str,
    ) -> PaymentHandle: ...

    def get_remote_status(self, reference: str, token: str | None = None) -> RemoteStatus: ...

    def create_refund(
        self,
        transaction_id: str,
        amount_minor: int | None = None,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]: ...

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]: ...
