"""Fixtures for API contract tests.

Routes run against moto-backed services. Booking and payment routes use
mocked provider gateways; webhook routes verify real Stripe signatures and
Paymob HMACs with secrets stored in mocked SSM.
"""

from typing import Generator

import pytest
from fastapi.testclient import TestClient

from flightpay.config import get_settings
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


@pytest.fixture
def verifying_reconciler(repository, ledger, notifications, ssm_secrets) -> WebhookReconciler:
    """Reconciler whose gateways check signatures against SSM secrets."""
    return WebhookReconciler(
        bookings=repository,
        ledger=ledger,
        notifications=notifications,
        stripe=StripeService(environment="dev"),
        paymob=PaymobService(settings=get_settings()),
    )


@pytest.fixture
def client(
    booking_service, payment_service, verifying_reconciler
) -> Generator[TestClient, None, None]:
    """TestClient with services bound to the mocked AWS resources."""
    app.dependency_overrides[get_booking_service] = lambda: booking_service
    app.dependency_overrides[get_payment_service] = lambda: payment_service
    app.dependency_overrides[get_webhook_reconciler] = lambda: verifying_reconciler
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"x-user-sub": TEST_USER_ID}
