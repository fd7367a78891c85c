"""Stripe card payments via PaymentIntents.

Provides integration with Stripe using the v8+ StripeClient pattern.
Retrieves API keys from SSM Parameter Store.
"""

import json
import logging
from functools import lru_cache
from typing import Any

import stripe
from stripe import StripeClient

from flightpay.config import get_settings
from flightpay.models import (
    PaymentHandle,
    PaymentOutcome,
    PaymentProvider,
    ProviderRequestError,
    ProviderUnavailableError,
    RemoteStatus,
    WebhookVerificationError,
)

from .ssm_service import SSMService, SSMServiceError, get_ssm_service, provider_secret_path

logger = logging.getLogger(__name__)

STRIPE_MAX_NETWORK_RETRIES = 3

PENDING_INTENT_STATUSES = frozenset(
    {"processing", "requires_action", "requires_confirmation", "requires_capture"}
)


def map_intent_status(intent: dict[str, Any]) -> PaymentOutcome:
    """Map a PaymentIntent's native status to a normalized outcome.

    Args:
        intent: PaymentIntent object as a dict.

    Returns:
        SUCCESS, PENDING or FAILURE.
    """
    status = intent.get("status")
    if status == "succeeded":
        return PaymentOutcome.SUCCESS
    if status in PENDING_INTENT_STATUSES:
        return PaymentOutcome.PENDING
    if status == "canceled":
        return PaymentOutcome.FAILURE
    if status == "requires_payment_method" and intent.get("last_payment_error"):
        return PaymentOutcome.FAILURE
    return PaymentOutcome.PENDING


class StripeService:
    """Card gateway backed by Stripe PaymentIntents.

    Handles:
    - PaymentIntent creation (order registration)
    - Client secret retrieval (payment handle)
    - Remote status lookups
    - Webhook signature validation
    - Refund processing

    Usage:
        stripe_svc = get_stripe_service()
        intent_id = stripe_svc.register_order(
            stripe_svc.authenticate(), "BKG-1A2B3C4D5E6F", 150000, "USD"
        )
    """

    provider = PaymentProvider.STRIPE

    def __init__(
        self,
        environment: str | None = None,
        ssm: SSMService | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        """Initialize Stripe service with credentials from SSM.

        Args:
            environment: Environment name (dev, prod). Defaults to settings.
            ssm: SSM service used to read secrets.
            timeout_seconds: Per-request timeout. Defaults to settings.
        """
        settings = get_settings()
        self._environment = environment or settings.environment
        self._ssm = ssm or get_ssm_service()
        self._timeout = timeout_seconds or settings.provider_timeout_seconds
        self._client: StripeClient | None = None
        self._webhook_secret: str | None = None

    def _get_client(self) -> StripeClient:
        """Get or create the Stripe client (lazy initialization).

        Returns:
            Initialized StripeClient instance.

        Raises:
            ProviderUnavailableError: If credentials cannot be retrieved.
        """
        if self._client is None:
            try:
                secret_key = self._ssm.get_parameter(
                    provider_secret_path(self._environment, self.provider.value, "secret_key")
                )
            except SSMServiceError as e:
                raise ProviderUnavailableError(
                    f"Failed to initialize Stripe client: {e}", provider=self.provider.value
                ) from e
            self._client = StripeClient(
                secret_key,
                http_client=stripe.RequestsClient(timeout=self._timeout),
                max_network_retries=STRIPE_MAX_NETWORK_RETRIES,
            )
            logger.info("Stripe client initialized for environment: %s", self._environment)
        return self._client

    def _get_webhook_secret(self) -> str:
        """Get the webhook signing secret.

        Raises:
            ProviderUnavailableError: If the secret cannot be retrieved.
        """
        if self._webhook_secret is None:
            try:
                self._webhook_secret = self._ssm.get_parameter(
                    provider_secret_path(self._environment, self.provider.value, "webhook_secret")
                )
            except SSMServiceError as e:
                raise ProviderUnavailableError(
                    f"Failed to get webhook secret: {e}", provider=self.provider.value
                ) from e
        return self._webhook_secret

    def _translate_error(self, action: str, error: stripe.StripeError) -> Exception:
        """Convert a Stripe SDK error into a provider error."""
        error_code = getattr(error, "code", None)
        status_code = getattr(error, "http_status", None)
        logger.error(
            "Stripe %s failed: %s (code: %s, status: %s)",
            action,
            str(error),
            error_code,
            status_code,
        )
        if isinstance(error, stripe.APIConnectionError) or (status_code or 0) >= 500:
            return ProviderUnavailableError(
                f"Stripe unavailable during {action}: {error}",
                provider=self.provider.value,
                status_code=status_code,
                provider_error_code=error_code,
            )
        return ProviderRequestError(
            f"Stripe rejected {action}: {error}",
            provider=self.provider.value,
            status_code=status_code,
            provider_error_code=error_code,
        )

    def authenticate(self) -> str:
        """Make sure the SDK client is ready.

        The SDK holds the secret key, so there is no separate token. The
        environment name is returned as an opaque marker.
        """
        self._get_client()
        return self._environment

    def register_order(
        self,
        token: str,
        merchant_order_id: str,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str] | None = None,
    ) -> str:
        """Create a PaymentIntent for a booking.

        Args:
            token: Unused; present for interface parity.
            merchant_order_id: Booking ID, stored in intent metadata.
            amount_minor: Amount in minor units.
            currency: ISO currency code.
            metadata: Extra metadata such as booking_ref.

        Returns:
            PaymentIntent ID (pi_...).

        Raises:
            ProviderRequestError: If Stripe rejects the request.
            ProviderUnavailableError: If Stripe cannot be reached.
        """
        client = self._get_client()
        intent_metadata = {"booking_id": merchant_order_id}
        if metadata:
            intent_metadata.update(metadata)

        try:
            logger.info(
                "Creating PaymentIntent for booking %s, amount %d %s",
                merchant_order_id,
                amount_minor,
                currency.upper(),
            )
            intent = client.payment_intents.create(
                params={
                    "amount": amount_minor,
                    "currency": currency.lower(),
                    "automatic_payment_methods": {"enabled": True},
                    "metadata": intent_metadata,
                }
            )
        except stripe.StripeError as e:
            raise self._translate_error("payment intent creation", e) from e

        logger.info("PaymentIntent created: %s for booking %s", intent.id, merchant_order_id)
        return str(intent.id)

    def request_payment_handle(
        self,
        token: str,
        amount_minor: int,
        provider_order_id: str,
        billing_data: dict[str, Any],
        currency: str,
    ) -> PaymentHandle:
        """Return the PaymentIntent client secret for the frontend."""
        client = self._get_client()
        try:
            intent = client.payment_intents.retrieve(provider_order_id)
        except stripe.StripeError as e:
            raise self._translate_error("payment intent retrieval", e) from e

        return PaymentHandle(
            handle=str(intent.client_secret),
            expires_at=None,
            provider_order_id=provider_order_id,
            provider=self.provider,
        )

    def get_remote_status(self, reference: str, token: str | None = None) -> RemoteStatus:
        """Look up a PaymentIntent and normalize its status.

        Args:
            reference: PaymentIntent ID.
            token: Unused; present for interface parity.

        Returns:
            RemoteStatus for the intent.
        """
        client = self._get_client()
        try:
            intent = client.payment_intents.retrieve(reference)
        except stripe.StripeError as e:
            raise self._translate_error("payment intent retrieval", e) from e

        data = intent.to_dict() if hasattr(intent, "to_dict") else dict(intent)
        return RemoteStatus(
            provider=self.provider,
            reference=reference,
            native_status=str(data.get("status")),
            outcome=map_intent_status(data),
            transaction_id=data.get("id") or reference,
            amount_minor=data.get("amount"),
            currency=(data.get("currency") or "").upper() or None,
            raw=data,
        )

    def create_refund(
        self,
        transaction_id: str,
        amount_minor: int | None = None,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """Create a refund for a payment.

        Args:
            transaction_id: Stripe PaymentIntent ID (pi_xxx).
            amount_minor: Refund amount in minor units. If None, full refund.
            reason: Reason for refund (for records).
            idempotency_key: Sent as Stripe's Idempotency-Key so a retried
                request returns the original refund instead of creating another.

        Returns:
            Dict with refund_id, amount and status.
        """
        client = self._get_client()

        params: dict[str, Any] = {"payment_intent": transaction_id}
        if amount_minor is not None:
            params["amount"] = amount_minor
        if reason:
            params["metadata"] = {"reason": reason}
        options: dict[str, Any] = {}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key

        try:
            logger.info(
                "Creating refund for PaymentIntent %s, amount %s",
                transaction_id,
                amount_minor if amount_minor is not None else "full",
            )
            refund = client.refunds.create(params=params, options=options)
        except stripe.StripeError as e:
            raise self._translate_error("refund creation", e) from e

        logger.info("Refund created: %s for PaymentIntent %s", refund.id, transaction_id)
        return {
            "refund_id": refund.id,
            "amount": refund.amount,
            "status": refund.status,
        }

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Verify a webhook signature and parse the event.

        Args:
            payload: Raw request body bytes, exactly as received.
            signature: Stripe-Signature header value.

        Returns:
            Parsed Stripe event dictionary.

        Raises:
            WebhookVerificationError: If the signature is missing or invalid.
            ProviderUnavailableError: If the signing secret cannot be read.
        """
        if not signature:
            raise WebhookVerificationError(
                "Missing Stripe-Signature header", provider=self.provider.value
            )
        webhook_secret = self._get_webhook_secret()

        try:
            event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise WebhookVerificationError(
                "Invalid webhook signature", provider=self.provider.value
            ) from e

        logger.info("Webhook signature verified for event: %s", event["id"])
        parsed: dict[str, Any] = json.loads(payload)
        return parsed


@lru_cache(maxsize=1)
def get_stripe_service() -> StripeService:
    """Get the shared StripeService instance (singleton pattern).

    Returns:
        StripeService: Shared service instance.
    """
    return StripeService()
