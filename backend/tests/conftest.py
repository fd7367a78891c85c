"""Pytest configuration and fixtures for flightpay backend tests.

This module provides reusable fixtures for testing:
- AWS mocking with moto (DynamoDB tables, SSM secrets, SES)
- Singleton and settings cache resets
- Sample booking requests (builders live in factories.py)
- Fully wired services with mocked provider gateways
"""

import os
import random
from typing import Any, Generator
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ["DYNAMODB_TABLE_PREFIX"] = "test-booking"
os.environ["ENVIRONMENT"] = "dev"
os.environ["FLIGHTPAY_PAYMOB_INTEGRATION_ID"] = "4455667"
os.environ["FLIGHTPAY_PROVIDER_RETRY_DELAY_SECONDS"] = "0"
os.environ["FLIGHTPAY_SCHEDULER_ENABLED"] = "false"
os.environ["FLIGHTPAY_NOTIFICATION_SENDER"] = "bookings@flightpay.example"

from flightpay.config import get_settings  # noqa: E402
from flightpay.models import (  # noqa: E402
    BookingCreate,
    PaymentProvider,
)
from flightpay.services.booking_repository import BookingRepository  # noqa: E402
from flightpay.services.booking_service import BookingService  # noqa: E402
from flightpay.services.dynamodb import DynamoDBService, reset_dynamodb_service  # noqa: E402
from flightpay.services.notification_service import NotificationService  # noqa: E402
from flightpay.services.payment_ledger import PaymentLedger  # noqa: E402
from flightpay.services.payment_service import PaymentService  # noqa: E402
from flightpay.services.paymob_service import PaymobService, get_paymob_service  # noqa: E402
from flightpay.services.seat_assignment import SeatAssignmentService  # noqa: E402
from flightpay.services.ssm_service import SSMService, get_ssm_service  # noqa: E402
from flightpay.services.stripe_service import StripeService, get_stripe_service  # noqa: E402
from flightpay.services.webhook_reconciler import WebhookReconciler  # noqa: E402

from factories import (  # noqa: E402
    PAYMOB_API_KEY,
    PAYMOB_HMAC_SECRET,
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
    TEST_USER_ID,
    one_way_payload,
    round_trip_payload,
)

TABLE_PREFIX = "test-booking"
REGION = "eu-west-1"


# === Singleton Resets ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset cached services and settings before and after each test.

    Tests using mock_aws need fresh boto3 clients created inside the mock
    context rather than ones cached by a previous test.
    """

    def reset() -> None:
        from flightpay_api.dependencies import reset_services

        reset_services()
        reset_dynamodb_service()
        get_settings.cache_clear()
        get_stripe_service.cache_clear()
        get_paymob_service.cache_clear()
        get_ssm_service.cache_clear()
        SSMService._instance = None
        SSMService._cache.clear()

    reset()
    yield
    reset()


# === AWS Fixtures ===


@pytest.fixture
def aws() -> Generator[None, None, None]:
    """Run the test inside a moto mock_aws context."""
    with mock_aws():
        yield


def _table(
    name: str,
    key: str,
    indexes: list[tuple[str, str, str | None]] | None = None,
) -> dict[str, Any]:
    attributes = {key}
    gsis = []
    for index_name, hash_key, range_key in indexes or []:
        attributes.add(hash_key)
        schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
        if range_key:
            attributes.add(range_key)
            schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
        gsis.append(
            {
                "IndexName": index_name,
                "KeySchema": schema,
                "Projection": {"ProjectionType": "ALL"},
            }
        )
    config: dict[str, Any] = {
        "TableName": f"{TABLE_PREFIX}-{name}",
        "KeySchema": [{"AttributeName": key, "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": attribute, "AttributeType": "S"} for attribute in sorted(attributes)
        ],
        "BillingMode": "PAY_PER_REQUEST",
    }
    if gsis:
        config["GlobalSecondaryIndexes"] = gsis
    return config


TABLES = [
    _table(
        "bookings",
        "booking_id",
        [
            ("user_id-index", "user_id", "created_at"),
            ("status-created_at-index", "status", "created_at"),
        ],
    ),
    _table(
        "payments",
        "payment_id",
        [
            ("booking_id-index", "booking_id", "created_at"),
            ("provider_order_id-index", "provider_order_id", None),
        ],
    ),
    _table("unique-keys", "unique_key"),
    _table("webhook-events", "event_id"),
]


@pytest.fixture
def create_tables(aws: None) -> None:
    """Create all required DynamoDB tables for testing."""
    client = boto3.client("dynamodb", region_name=REGION)
    for table_config in TABLES:
        client.create_table(**table_config)


@pytest.fixture
def db(create_tables: None) -> DynamoDBService:
    """DynamoDBService bound to the mocked tables."""
    return DynamoDBService()


@pytest.fixture
def ssm_secrets(aws: None) -> dict[str, str]:
    """Store provider secrets in mocked SSM Parameter Store."""
    params = {
        "/flightpay/dev/stripe/secret_key": STRIPE_SECRET_KEY,
        "/flightpay/dev/stripe/webhook_secret": STRIPE_WEBHOOK_SECRET,
        "/flightpay/dev/paymob/api_key": PAYMOB_API_KEY,
        "/flightpay/dev/paymob/hmac_secret": PAYMOB_HMAC_SECRET,
    }
    client = boto3.client("ssm", region_name=REGION)
    for name, value in params.items():
        client.put_parameter(Name=name, Value=value, Type="SecureString")
    return params


@pytest.fixture
def ses_client(aws: None) -> Any:
    """Mocked SES client with the sender identity verified."""
    client = boto3.client("ses", region_name=REGION)
    client.verify_email_identity(EmailAddress="bookings@flightpay.example")
    return client


# === Sample Data Fixtures ===


@pytest.fixture
def one_way_request() -> BookingCreate:
    return BookingCreate.model_validate(one_way_payload())


@pytest.fixture
def round_trip_request() -> BookingCreate:
    return BookingCreate.model_validate(round_trip_payload())


# === Service Fixtures ===


@pytest.fixture
def notifications() -> MagicMock:
    """Notification collaborator that records calls instead of emailing."""
    mock = MagicMock(spec=NotificationService)
    mock.send_booking_confirmation.return_value = True
    mock.send_booking_cancelled.return_value = True
    return mock


@pytest.fixture
def stripe_gateway() -> MagicMock:
    """Stripe gateway double; verify_webhook accepts everything by default."""
    gateway = MagicMock(spec=StripeService)
    gateway.provider = PaymentProvider.STRIPE
    gateway.authenticate.return_value = "dev"
    gateway.verify_webhook.side_effect = lambda payload, signature: {}
    return gateway


@pytest.fixture
def paymob_gateway() -> MagicMock:
    """Paymob gateway double; verify_webhook accepts everything by default."""
    gateway = MagicMock(spec=PaymobService)
    gateway.provider = PaymentProvider.PAYMOB
    gateway.authenticate.return_value = "paymob-token"
    gateway.verify_webhook.side_effect = lambda payload, signature: {}
    return gateway


@pytest.fixture
def repository(db: DynamoDBService) -> BookingRepository:
    return BookingRepository(db)


@pytest.fixture
def ledger(db: DynamoDBService) -> PaymentLedger:
    return PaymentLedger(db)


@pytest.fixture
def booking_service(repository: BookingRepository, notifications: MagicMock) -> BookingService:
    return BookingService(
        repository=repository,
        seats=SeatAssignmentService(random.Random(7)),
        notifications=notifications,
        settings=get_settings(),
    )


@pytest.fixture
def reconciler(
    repository: BookingRepository,
    ledger: PaymentLedger,
    notifications: MagicMock,
    stripe_gateway: MagicMock,
    paymob_gateway: MagicMock,
) -> WebhookReconciler:
    return WebhookReconciler(
        bookings=repository,
        ledger=ledger,
        notifications=notifications,
        stripe=stripe_gateway,
        paymob=paymob_gateway,
    )


@pytest.fixture
def payment_service(
    booking_service: BookingService,
    ledger: PaymentLedger,
    reconciler: WebhookReconciler,
    stripe_gateway: MagicMock,
    paymob_gateway: MagicMock,
) -> PaymentService:
    return PaymentService(
        bookings=booking_service,
        ledger=ledger,
        reconciler=reconciler,
        stripe=stripe_gateway,
        paymob=paymob_gateway,
        settings=get_settings(),
    )


@pytest.fixture
def pending_booking(booking_service: BookingService, one_way_request: BookingCreate) -> Any:
    """A freshly created 1500.00 USD one-way booking owned by TEST_USER_ID."""
    return booking_service.create_booking(TEST_USER_ID, one_way_request)

