"""Test data builders shared by unit, contract and integration tests."""

import hashlib
import hmac
import random
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any

TEST_USER_ID = "user-sub-123"
OTHER_USER_ID = "user-sub-999"

STRIPE_SECRET_KEY = "sk_test_flightpay123"
STRIPE_WEBHOOK_SECRET = "whsec_test_flightpay123"
PAYMOB_API_KEY = "paymob_api_key_test"
PAYMOB_HMAC_SECRET = "paymob_hmac_secret_test"


def make_traveller(first_name: str = "Ahmed", traveler_type: str = "adult", **overrides: Any) -> dict[str, Any]:
    traveller = {
        "first_name": first_name,
        "last_name": "Mohamed",
        "birth_date": "1990-05-14",
        "traveler_type": traveler_type,
        "nationality": "Egyptian",
        "passport_number": f"A{random.randint(10000000, 99999999)}",
        "issuing_country": "Egypt",
        "expiry_date": (date.today() + timedelta(days=900)).isoformat(),
    }
    traveller.update(overrides)
    return traveller


def one_way_payload(**overrides: Any) -> dict[str, Any]:
    """JSON body for a ONE_WAY booking of 1500.00 USD."""
    departure = datetime.now(timezone.utc) + timedelta(days=30)
    payload: dict[str, Any] = {
        "booking_type": "ONE_WAY",
        "flight_id": "FL123456",
        "origin_airport_code": "LGA",
        "destination_airport_code": "DAD",
        "origin_city": "New York",
        "destination_city": "Da Nang",
        "departure_date": departure.isoformat(),
        "arrival_date": (departure + timedelta(hours=20)).isoformat(),
        "number_of_stops": 1,
        "cabin_class": "economy",
        "total_price": "1500.00",
        "currency": "USD",
        "travellers": [make_traveller()],
        "contact_details": {"email": "ahmed@example.com", "phone": "+201234567890"},
    }
    payload.update(overrides)
    return payload


def round_trip_payload(return_offset_hours: int = 72, **overrides: Any) -> dict[str, Any]:
    """JSON body for a ROUND_TRIP booking."""
    departure = datetime.now(timezone.utc) + timedelta(days=30)
    arrival = departure + timedelta(hours=12)
    return_departure = arrival + timedelta(hours=return_offset_hours)
    payload: dict[str, Any] = {
        "booking_type": "ROUND_TRIP",
        "flight_data": [
            {
                "flight_id": "FL100",
                "type_of_flight": "OUTBOUND",
                "origin_airport_code": "CAI",
                "destination_airport_code": "DXB",
                "departure_date": departure.isoformat(),
                "arrival_date": arrival.isoformat(),
            },
            {
                "flight_id": "FL200",
                "type_of_flight": "RETURN",
                "origin_airport_code": "DXB",
                "destination_airport_code": "CAI",
                "departure_date": return_departure.isoformat(),
                "arrival_date": (return_departure + timedelta(hours=4)).isoformat(),
            },
        ],
        "cabin_class": "business",
        "total_price": "820.50",
        "currency": "EGP",
        "travellers": [
            make_traveller("Ahmed"),
            make_traveller("Mona", "child", birth_date="2016-02-01"),
            make_traveller("Yara", "infant", birth_date="2025-01-10"),
        ],
        "contact_details": {"email": "ahmed@example.com", "phone": "+201234567890"},
    }
    payload.update(overrides)
    return payload


def stripe_event(
    event_type: str,
    intent_id: str,
    booking_id: str | None,
    *,
    event_id: str = "evt_1TEST",
    amount: int = 150000,
    currency: str = "usd",
    **intent_fields: Any,
) -> dict[str, Any]:
    """Build a Stripe PaymentIntent event body."""
    intent: dict[str, Any] = {
        "id": intent_id,
        "object": "payment_intent",
        "amount": amount,
        "amount_received": amount if event_type == "payment_intent.succeeded" else 0,
        "currency": currency,
        "status": {
            "payment_intent.succeeded": "succeeded",
            "payment_intent.processing": "processing",
            "payment_intent.payment_failed": "requires_payment_method",
            "payment_intent.canceled": "canceled",
        }.get(event_type, "requires_payment_method"),
        "metadata": {"booking_id": booking_id} if booking_id else {},
    }
    intent.update(intent_fields)
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(datetime.now(timezone.utc).timestamp()),
        "data": {"object": intent},
    }


def paymob_callback(
    transaction_id: int,
    order_id: int,
    booking_id: str | None,
    *,
    success: bool = True,
    pending: bool = False,
    amount_cents: int = 150000,
    currency: str = "USD",
) -> dict[str, Any]:
    """Build a Paymob TRANSACTION callback body."""
    return {
        "type": "TRANSACTION",
        "obj": {
            "id": transaction_id,
            "pending": pending,
            "amount_cents": amount_cents,
            "success": success,
            "is_auth": False,
            "is_capture": False,
            "is_standalone_payment": True,
            "is_voided": False,
            "is_refunded": False,
            "is_3d_secure": True,
            "integration_id": 4455667,
            "has_parent_transaction": False,
            "order": {
                "id": order_id,
                "merchant_order_id": booking_id,
            },
            "created_at": "2026-10-17T10:15:00.000000",
            "currency": currency,
            "error_occured": False,
            "owner": 302,
            "data": {
                "txn_response_code": "APPROVED" if success else "DECLINED",
                "message": "Approved" if success else "Do not honour",
            },
        },
    }


def stripe_signature(payload: bytes, secret: str = STRIPE_WEBHOOK_SECRET) -> str:
    """Create a valid Stripe-Signature header.

    Stripe signatures use HMAC-SHA256 with format: t={timestamp},v1={signature}
    """
    timestamp = str(int(time.time()))
    signed_payload = f"{timestamp}.{payload.decode('utf-8')}"
    signature = hmac.new(secret.encode("utf-8"), signed_payload.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"
