"""Fixtures for end-to-end flows through the API.

Payment, status and webhook handling share the same provider services, as
in production. Stripe SDK calls are answered by a patched StripeClient and
Paymob HTTP calls by respx; signatures are computed and verified for real.
"""

from typing import Any, Generator
from unittest.mock import MagicMock, patch

import pytest
import respx
from fastapi.testclient import TestClient

from flightpay.config import get_settings
from flightpay.services.booking_service import BookingService
from flightpay.services.payment_ledger import PaymentLedger
from flightpay.services.payment_service import PaymentService
from flightpay.services.paymob_service import PaymobService
from flightpay.services.stripe_service import StripeService
from flightpay.services.webhook_reconciler import WebhookReconciler

from flightpay_api.dependencies import (
    get_booking_service,
    get_payment_service,
    get_webhook_reconciler,
)
from flightpay_api.main import app

from factories import TEST_USER_ID

PAYMOB_BASE_URL = "https://accept.paymob.com/api"
INTENT_ID = "pi_3LiveFlow"


@pytest.fixture
def stripe_api() -> Generator[MagicMock, None, None]:
    """StripeClient double serving one PaymentIntent for 1500.00 USD."""
    intent = MagicMock()
    intent.id = INTENT_ID
    intent.client_secret = f"{INTENT_ID}_secret_live"
    with patch("flightpay.services.stripe_service.StripeClient") as client_class:
        client = MagicMock()
        client.payment_intents.create.return_value = intent
        client.payment_intents.retrieve.return_value = intent
        client_class.return_value = client
        yield client


@pytest.fixture
def paymob_api() -> Generator[respx.MockRouter, None, None]:
    with respx.mock(base_url=PAYMOB_BASE_URL, assert_all_called=False) as router:
        router.post("/auth/tokens").respond(200, json={"token": "auth-token"})
        router.post("/ecommerce/orders", name="register_order").respond(201, json={"id": 9001})
        router.post("/acceptance/payment_keys").respond(201, json={"token": "payment-key-live"})
        yield router


@pytest.fixture
def live_services(
    repository,
    ledger: PaymentLedger,
    booking_service: BookingService,
    notifications: MagicMock,
    ssm_secrets: dict[str, str],
    stripe_api: MagicMock,
    paymob_api: respx.MockRouter,
) -> Generator[dict[str, Any], None, None]:
    """Services wired the way flightpay_api.dependencies wires them."""
    stripe = StripeService(environment="dev")
    paymob = PaymobService(settings=get_settings())
    reconciler = WebhookReconciler(
        bookings=repository,
        ledger=ledger,
        notifications=notifications,
        stripe=stripe,
        paymob=paymob,
    )
    payments = PaymentService(
        bookings=booking_service,
        ledger=ledger,
        reconciler=reconciler,
        stripe=stripe,
        paymob=paymob,
        settings=get_settings(),
    )
    yield {
        "bookings": booking_service,
        "payments": payments,
        "reconciler": reconciler,
        "ledger": ledger,
    }
    paymob.close()


@pytest.fixture
def client(live_services: dict[str, Any]) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_booking_service] = lambda: live_services["bookings"]
    app.dependency_overrides[get_payment_service] = lambda: live_services["payments"]
    app.dependency_overrides[get_webhook_reconciler] = lambda: live_services["reconciler"]
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"x-user-sub": TEST_USER_ID}
