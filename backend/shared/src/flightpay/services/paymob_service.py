"""Paymob Accept client for wallet and card payments.

Paymob's flow is three calls: exchange the API key for an auth token,
register an order, then request a payment key for the iframe. Transaction
callbacks are signed with HMAC-SHA512 over a fixed list of fields.
"""

import hashlib
import hmac
import json
import logging
import time
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Any

import httpx

from flightpay.config import Settings, get_settings
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

# Order of transaction fields concatenated for the callback HMAC
HMAC_FIELDS: tuple[str, ...] = (
    "amount_cents",
    "created_at",
    "currency",
    "error_occured",
    "has_parent_transaction",
    "id",
    "integration_id",
    "is_3d_secure",
    "is_auth",
    "is_capture",
    "is_refunded",
    "is_standalone_payment",
    "is_voided",
    "order.id",
    "owner",
    "pending",
    "success",
)

DEFAULT_BILLING_DATA: dict[str, str] = {
    "apartment": "NA",
    "email": "NA",
    "floor": "NA",
    "first_name": "NA",
    "street": "NA",
    "building": "NA",
    "phone_number": "NA",
    "shipping_method": "NA",
    "postal_code": "NA",
    "city": "NA",
    "country": "EG",
    "last_name": "NA",
    "state": "NA",
}


def _lookup(obj: dict[str, Any], dotted: str) -> Any:
    value: Any = obj
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _hmac_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def compute_transaction_hmac(transaction: dict[str, Any], secret: str) -> str:
    """Compute the HMAC-SHA512 hex digest Paymob sends with a callback.

    Args:
        transaction: The callback's ``obj`` (transaction) payload.
        secret: Merchant HMAC secret.

    Returns:
        Lowercase hex digest.
    """
    message = "".join(_hmac_value(_lookup(transaction, field)) for field in HMAC_FIELDS)
    return hmac.new(secret.encode(), message.encode(), hashlib.sha512).hexdigest()


def map_transaction_status(transaction: dict[str, Any]) -> PaymentOutcome:
    """Map a Paymob transaction to a normalized outcome."""
    if transaction.get("success") is True:
        return PaymentOutcome.SUCCESS
    if transaction.get("pending") is True:
        return PaymentOutcome.PENDING
    return PaymentOutcome.FAILURE


class PaymobService:
    """Paymob Accept API client.

    Retries transport failures and 5xx responses with exponential backoff.
    A 4xx is returned to the caller immediately as ProviderRequestError.
    Auth tokens are fetched per operation and never cached.
    """

    provider = PaymentProvider.PAYMOB

    def __init__(
        self,
        settings: Settings | None = None,
        ssm: SSMService | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Runtime settings. Defaults to get_settings().
            ssm: SSM service used to read the API key and HMAC secret.
            http_client: Preconfigured httpx client (tests).
        """
        self._settings = settings or get_settings()
        self._ssm = ssm or get_ssm_service()
        self._environment = self._settings.environment
        self._max_retries = self._settings.provider_max_retries
        self._retry_delay = self._settings.provider_retry_delay_seconds
        self._http = http_client or httpx.Client(
            base_url=self._settings.paymob_base_url,
            timeout=self._settings.provider_timeout_seconds,
            headers={"Content-Type": "application/json"},
        )

    @property
    def integration_id(self) -> str:
        """Configured Paymob integration (card or wallet) ID."""
        return self._settings.paymob_integration_id

    def _secret(self, name: str) -> str:
        try:
            path = provider_secret_path(self._environment, self.provider.value, name)
            return self._ssm.get_parameter(path)
        except SSMServiceError as e:
            raise ProviderUnavailableError(
                f"Failed to read Paymob {name}: {e}", provider=self.provider.value
            ) from e

    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        """Send a request, retrying transport errors and 5xx responses.

        Returns:
            Decoded JSON body.

        Raises:
            ProviderRequestError: On a 4xx response.
            ProviderUnavailableError: When retries are exhausted.
        """
        last_error: str = "no attempt made"
        status_code: int | None = None
        for attempt in range(self._max_retries + 1):
            logger.debug(
                "Paymob %s %s (attempt %d/%d)", method, url, attempt + 1, self._max_retries + 1
            )
            try:
                response = self._http.request(method, url, **kwargs)
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
                status_code = None
                logger.warning("Paymob %s %s transport error: %s", method, url, last_error)
            else:
                if response.status_code < 400:
                    body: dict[str, Any] = response.json()
                    return body
                if response.status_code < 500:
                    logger.warning(
                        "Paymob %s %s rejected with status %d: %s",
                        method,
                        url,
                        response.status_code,
                        response.text,
                    )
                    raise ProviderRequestError(
                        f"Paymob rejected {method} {url}: {response.text}",
                        provider=self.provider.value,
                        status_code=response.status_code,
                    )
                last_error = f"status {response.status_code}"
                status_code = response.status_code
                logger.warning("Paymob %s %s failed with %s", method, url, last_error)

            if attempt < self._max_retries:
                delay = self._retry_delay * (2**attempt)
                logger.debug("Retrying Paymob request in %.2fs", delay)
                time.sleep(delay)

        logger.error("Paymob %s %s failed after %d attempts", method, url, self._max_retries + 1)
        raise ProviderUnavailableError(
            f"Paymob unavailable for {method} {url}: {last_error}",
            provider=self.provider.value,
            status_code=status_code,
        )

    def authenticate(self) -> str:
        """Exchange the API key for a short-lived auth token."""
        body = self._request("POST", "/auth/tokens", json={"api_key": self._secret("api_key")})
        token = body.get("token")
        if not token:
            raise ProviderRequestError(
                "Paymob authentication returned no token", provider=self.provider.value
            )
        return str(token)

    def register_order(
        self,
        token: str,
        merchant_order_id: str,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str] | None = None,
    ) -> str:
        """Register an order for a booking.

        Args:
            token: Auth token from authenticate().
            merchant_order_id: Booking ID.
            amount_minor: Amount in minor units.
            currency: ISO currency code.
            metadata: Ignored; Paymob orders carry no free-form metadata.

        Returns:
            Paymob order ID as a string.
        """
        body = self._request(
            "POST",
            "/ecommerce/orders",
            json={
                "auth_token": token,
                "delivery_needed": False,
                "amount_cents": amount_minor,
                "currency": currency.upper(),
                "merchant_order_id": merchant_order_id,
                "items": [],
            },
        )
        order_id = str(body["id"])
        logger.info("Paymob order %s registered for booking %s", order_id, merchant_order_id)
        return order_id

    def request_payment_handle(
        self,
        token: str,
        amount_minor: int,
        provider_order_id: str,
        billing_data: dict[str, Any],
        currency: str,
    ) -> PaymentHandle:
        """Request a payment key for the hosted iframe."""
        expiration = self._settings.payment_key_expiration_seconds
        billing = {**DEFAULT_BILLING_DATA, **{k: v for k, v in billing_data.items() if v}}
        body = self._request(
            "POST",
            "/acceptance/payment_keys",
            json={
                "auth_token": token,
                "amount_cents": amount_minor,
                "expiration": expiration,
                "order_id": provider_order_id,
                "billing_data": billing,
                "currency": currency.upper(),
                "integration_id": int(self.integration_id),
                "lock_order_when_paid": True,
            },
        )
        return PaymentHandle(
            handle=str(body["token"]),
            expires_at=datetime.now(UTC) + timedelta(seconds=expiration),
            provider_order_id=provider_order_id,
            provider=self.provider,
            integration_id=self.integration_id,
        )

    def get_remote_status(self, reference: str, token: str | None = None) -> RemoteStatus:
        """Fetch a transaction by ID and normalize its status.

        Args:
            reference: Paymob transaction ID.
            token: Auth token. Fetched if not given.
        """
        auth = token or self.authenticate()
        body = self._request(
            "GET",
            f"/acceptance/transactions/{reference}",
            headers={"Authorization": f"Bearer {auth}"},
        )
        outcome = map_transaction_status(body)
        if outcome is PaymentOutcome.SUCCESS:
            native = "success"
        elif outcome is PaymentOutcome.PENDING:
            native = "pending"
        else:
            native = "failed"
        return RemoteStatus(
            provider=self.provider,
            reference=reference,
            native_status=native,
            outcome=outcome,
            transaction_id=str(body.get("id", reference)),
            amount_minor=body.get("amount_cents"),
            currency=body.get("currency"),
            raw=body,
        )

    def get_order_status(self, order_id: str, token: str | None = None) -> RemoteStatus:
        """Fetch an order by ID. Used before a transaction ID is known.

        A PAID order maps to SUCCESS; anything else is still PENDING.
        """
        auth = token or self.authenticate()
        body = self._request(
            "GET",
            f"/ecommerce/orders/{order_id}",
            headers={"Authorization": f"Bearer {auth}"},
        )
        native = str(body.get("payment_status", "UNKNOWN"))
        return RemoteStatus(
            provider=self.provider,
            reference=order_id,
            native_status=native,
            outcome=PaymentOutcome.SUCCESS if native == "PAID" else PaymentOutcome.PENDING,
            transaction_id=None,
            amount_minor=body.get("amount_cents"),
            currency=body.get("currency"),
            raw=body,
        )

    def create_refund(
        self,
        transaction_id: str,
        amount_minor: int | None = None,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """Refund a captured transaction.

        Paymob needs an explicit amount, so a full refund looks up the
        transaction's captured amount first.
        Paymob has no idempotency header; idempotency_key is only logged.
        """
        token = self.authenticate()
        if amount_minor is None:
            amount_minor = self.get_remote_status(transaction_id, token).amount_minor
        logger.info(
            "Creating Paymob refund for transaction %s, amount %s (reason: %s, key: %s)",
            transaction_id,
            amount_minor,
            reason,
            idempotency_key,
        )
        body = self._request(
            "POST",
            "/acceptance/void_refund/refund",
            json={
                "auth_token": token,
                "transaction_id": transaction_id,
                "amount_cents": amount_minor,
            },
        )
        return {
            "refund_id": str(body.get("id", "")),
            "amount": body.get("amount_cents", amount_minor),
            "status": "succeeded" if body.get("success") else "pending",
        }

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Verify a transaction callback against its HMAC.

        Args:
            payload: Raw callback body.
            signature: Value of the ``hmac`` query parameter or signature header.

        Returns:
            Parsed callback body.

        Raises:
            WebhookVerificationError: If the signature is missing or does not match.
            ValueError: If the body is not a JSON object with an ``obj`` transaction.
        """
        body = json.loads(payload)
        if not isinstance(body, dict) or not isinstance(body.get("obj"), dict):
            raise ValueError("Paymob callback has no transaction object")
        if not signature:
            raise WebhookVerificationError("Missing HMAC signature", provider=self.provider.value)

        expected = compute_transaction_hmac(body["obj"], self._secret("hmac_secret"))
        if not hmac.compare_digest(expected, signature.lower()):
            logger.warning("Invalid Paymob HMAC for transaction %s", body["obj"].get("id"))
            raise WebhookVerificationError("Invalid HMAC signature", provider=self.provider.value)
        return body

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._http.close()


@lru_cache(maxsize=1)
def get_paymob_service() -> PaymobService:
    """Get the shared PaymobService instance (singleton pattern).

    Returns:
        PaymobService: Shared service instance.
    """
    return PaymobService()
