"""Contract tests for the payment endpoints.

- POST /api/payments/handle
- GET /api/payments/status/{booking_id}
- POST /api/payments/sync/{booking_id}
- POST /api/payments/refund
- GET /api/payments/details/{booking_id}
"""

import json
from decimal import Decimal

import pytest
from starlette.status import (
    HTTP_200_OK,
    HTTP_201_CREATED,
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from flightpay.models import (
    PaymentHandle,
    PaymentOutcome,
    PaymentProvider,
    ProviderRequestError,
    ProviderUnavailableError,
    RemoteStatus,
)

from factories import OTHER_USER_ID, stripe_event


@pytest.fixture
def stripe_ready(stripe_gateway):
    stripe_gateway.register_order.return_value = "pi_123"
    stripe_gateway.request_payment_handle.return_value = PaymentHandle(
        handle="pi_123_secret_abc",
        provider_order_id="pi_123",
        provider=PaymentProvider.STRIPE,
    )
    stripe_gateway.create_refund.side_effect = lambda txn, amount, reason, idempotency_key=None: {
        "refund_id": "re_123",
        "amount": amount,
        "status": "succeeded",
    }
    return stripe_gateway


def _handle(client, auth_headers, booking_id, **overrides):
    body = {"booking_id": booking_id, "amount": "1500.00", "currency": "USD", "provider": "stripe"}
    body.update(overrides)
    return client.post("/api/payments/handle", json=body, headers=auth_headers)


def _confirm_with_stripe(payment_service, booking_id):
    body = stripe_event("payment_intent.succeeded", "pi_123", booking_id)
    payment_service.reconciler.handle_stripe_webhook(json.dumps(body).encode(), "sig")


class TestPaymentHandle:
    def test_returns_client_secret(self, client, auth_headers, stripe_ready, pending_booking):
        response = _handle(client, auth_headers, pending_booking.booking_id)

        assert response.status_code == HTTP_201_CREATED, response.text
        data = response.json()
        assert data["handle"] == "pi_123_secret_abc"
        assert data["provider"] == "stripe"
        assert data["provider_order_id"] == "pi_123"
        assert data["payment_id"].startswith("PAY-")

    def test_amount_mismatch(self, client, auth_headers, stripe_ready, pending_booking):
        response = _handle(client, auth_headers, pending_booking.booking_id, amount="1499.99")

        assert response.status_code == HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["error_code"] == "ERR_VAL_003"
        assert body["details"]["received"] == "1499.99 USD"
        assert body["details"]["expected"].endswith(" USD")
        stripe_ready.register_order.assert_not_called()

    def test_unsupported_provider(self, client, auth_headers, pending_booking):
        response = _handle(client, auth_headers, pending_booking.booking_id, provider="cash")

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "ERR_VAL_004"

    def test_non_positive_amount_is_validation_error(self, client, auth_headers, pending_booking):
        response = _handle(client, auth_headers, pending_booking.booking_id, amount="0")

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "ERR_VAL_001"

    def test_other_user_forbidden(self, client, stripe_ready, pending_booking):
        response = _handle(client, {"x-user-sub": OTHER_USER_ID}, pending_booking.booking_id)

        assert response.status_code == HTTP_403_FORBIDDEN

    @pytest.mark.parametrize(
        "error,status_code,error_code",
        [
            (ProviderRequestError("rejected", provider="stripe"), HTTP_502_BAD_GATEWAY, "ERR_PAY_004"),
            (ProviderUnavailableError("timeout", provider="stripe"), HTTP_503_SERVICE_UNAVAILABLE, "ERR_PAY_005"),
        ],
    )
    def test_provider_errors(
        self, client, auth_headers, stripe_ready, pending_booking, error, status_code, error_code
    ):
        stripe_ready.register_order.side_effect = error

        response = _handle(client, auth_headers, pending_booking.booking_id)

        assert response.status_code == status_code
        body = response.json()
        assert body["error_code"] == error_code
        assert body["details"]["provider"] == "stripe"


class TestPaymentStatus:
    def test_status_after_handle(self, client, auth_headers, stripe_ready, pending_booking):
        _handle(client, auth_headers, pending_booking.booking_id)

        response = client.get(f"/api/payments/status/{pending_booking.booking_id}", headers=auth_headers)

        assert response.status_code == HTTP_200_OK
        data = response.json()
        assert data["booking_status"] == "pending"
        assert data["payment_status"] == "pending"
        assert data["transaction_id"] == "pi_123"

    def test_sync_confirms_on_remote_success(self, client, auth_headers, stripe_ready, pending_booking):
        _handle(client, auth_headers, pending_booking.booking_id)
        stripe_ready.get_remote_status.return_value = RemoteStatus(
            provider=PaymentProvider.STRIPE,
            reference="pi_123",
            native_status="succeeded",
            outcome=PaymentOutcome.SUCCESS,
            transaction_id="pi_123",
            amount_minor=150000,
            currency="USD",
        )

        response = client.post(f"/api/payments/sync/{pending_booking.booking_id}", headers=auth_headers)

        assert response.status_code == HTTP_200_OK
        data = response.json()
        assert data["booking_status"] == "confirmed"
        assert data["payment_status"] == "completed"
        assert data["provider_status"] == "succeeded"

    def test_sync_requires_owner(self, client, stripe_ready, pending_booking):
        response = client.post(
            f"/api/payments/sync/{pending_booking.booking_id}", headers={"x-user-sub": OTHER_USER_ID}
        )

        assert response.status_code == HTTP_403_FORBIDDEN
        stripe_ready.get_remote_status.assert_not_called()

    def test_sync_without_payment(self, client, auth_headers, pending_booking):
        response = client.post(f"/api/payments/sync/{pending_booking.booking_id}", headers=auth_headers)

        assert response.status_code == HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "ERR_PAY_001"


class TestRefunds:
    def test_partial_then_remaining(
        self, client, auth_headers, stripe_ready, pending_booking, payment_service
    ):
        _handle(client, auth_headers, pending_booking.booking_id)
        _confirm_with_stripe(payment_service, pending_booking.booking_id)

        response = client.post(
            "/api/payments/refund",
            json={"booking_id": pending_booking.booking_id, "amount": "500.00", "reason": "Seat downgrade"},
            headers=auth_headers,
        )

        assert response.status_code == HTTP_200_OK, response.text
        data = response.json()
        assert data["status"] == "partially_refunded"
        assert data["refund_reason"] == "Seat downgrade"

        # Only a completed payment is refundable
        again = client.post(
            "/api/payments/refund", json={"booking_id": pending_booking.booking_id}, headers=auth_headers
        )
        assert again.status_code == HTTP_400_BAD_REQUEST
        assert again.json()["error_code"] == "ERR_PAY_002"

    def test_refund_exceeding_payment(
        self, client, auth_headers, stripe_ready, pending_booking, payment_service
    ):
        _handle(client, auth_headers, pending_booking.booking_id)
        _confirm_with_stripe(payment_service, pending_booking.booking_id)

        response = client.post(
            "/api/payments/refund",
            json={"booking_id": pending_booking.booking_id, "amount": "1500.01"},
            headers=auth_headers,
        )

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "ERR_PAY_003"

    def test_refund_in_progress_conflict(
        self, client, auth_headers, stripe_ready, pending_booking, payment_service
    ):
        _handle(client, auth_headers, pending_booking.booking_id)
        _confirm_with_stripe(payment_service, pending_booking.booking_id)
        record = payment_service.ledger.find_by_transaction_id("pi_123")
        payment_service.ledger.claim_refund(record, record.amount)

        response = client.post(
            "/api/payments/refund", json={"booking_id": pending_booking.booking_id}, headers=auth_headers
        )

        assert response.status_code == HTTP_409_CONFLICT
        assert response.json()["error_code"] == "ERR_PAY_006"
        stripe_ready.create_refund.assert_not_called()

    def test_details_list_ledger_records(
        self, client, auth_headers, stripe_ready, pending_booking, payment_service
    ):
        _handle(client, auth_headers, pending_booking.booking_id)
        _confirm_with_stripe(payment_service, pending_booking.booking_id)

        response = client.get(f"/api/payments/details/{pending_booking.booking_id}", headers=auth_headers)

        assert response.status_code == HTTP_200_OK
        data = response.json()
        assert data["total_count"] == 1
        assert data["payments"][0]["status"] == "completed"
        assert Decimal(data["payments"][0]["amount"]) == Decimal("1500.00")
