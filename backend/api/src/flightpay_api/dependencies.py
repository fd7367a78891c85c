"""FastAPI dependency injection providers for flightpay services.

This module provides factory functions for service instances using @lru_cache
to ensure one instance per process. Services are lazily instantiated and
cached; the scheduler shares the same instances as the routes.

Usage in routes:
    from flightpay_api.dependencies import get_booking_service

    @router.get("/bookings")
    def list_bookings(
        service: BookingService = Depends(get_booking_service),
    ):
        ...

Service Dependency Graph:
    DynamoDBService (singleton via get_dynamodb_service)
        ├── BookingRepository ─┬── BookingService
        │                      └── WebhookReconciler
        └── PaymentLedger ─────┬── WebhookReconciler
                               └── PaymentService
    StripeService / PaymobService ── WebhookReconciler, PaymentService

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from flightpay.config import get_settings
from flightpay.services.booking_repository import BookingRepository
from flightpay.services.booking_service import BookingService
from flightpay.services.dynamodb import get_dynamodb_service, reset_dynamodb_service
from flightpay.services.notification_service import NotificationService
from flightpay.services.payment_ledger import PaymentLedger
from flightpay.services.payment_service import PaymentService
from flightpay.services.paymob_service import PaymobService, get_paymob_service
from flightpay.services.seat_assignment import SeatAssignmentService
from flightpay.services.stripe_service import StripeService, get_stripe_service
from flightpay.services.webhook_reconciler import ReconcilerConfig, WebhookReconciler


@lru_cache
def get_booking_repository() -> BookingRepository:
    """Get cached BookingRepository configured with the DynamoDB singleton."""
    return BookingRepository(db=get_dynamodb_service())


@lru_cache
def get_payment_ledger() -> PaymentLedger:
    """Get cached PaymentLedger configured with the DynamoDB singleton."""
    return PaymentLedger(db=get_dynamodb_service())


@lru_cache
def get_seat_assignment_service() -> SeatAssignmentService:
    return SeatAssignmentService()


@lru_cache
def get_notification_service() -> NotificationService:
    return NotificationService(settings=get_settings())


def get_stripe() -> StripeService:
    """Get the Stripe gateway."""
    return get_stripe_service()


def get_paymob() -> PaymobService:
    """Get the Paymob gateway."""
    return get_paymob_service()


@lru_cache
def get_booking_service() -> BookingService:
    """Get cached BookingService instance.

    Returns:
        BookingService wired to the repository, seats and notifications.
    """
    return BookingService(
        repository=get_booking_repository(),
        seats=get_seat_assignment_service(),
        notifications=get_notification_service(),
        settings=get_settings(),
    )


@lru_cache
def get_webhook_reconciler() -> WebhookReconciler:
    """Get cached WebhookReconciler instance.

    The signature verification mode comes from settings.
    """
    return WebhookReconciler(
        bookings=get_booking_repository(),
        ledger=get_payment_ledger(),
        notifications=get_notification_service(),
        stripe=get_stripe(),
        paymob=get_paymob(),
        config=ReconcilerConfig(verification_mode=get_settings().webhook_verification_mode),
    )


@lru_cache
def get_payment_service() -> PaymentService:
    """Get cached PaymentService instance."""
    return PaymentService(
        bookings=get_booking_service(),
        ledger=get_payment_ledger(),
        reconciler=get_webhook_reconciler(),
        stripe=get_stripe(),
        paymob=get_paymob(),
        settings=get_settings(),
    )


def reset_services() -> None:
    """Clear all cached service instances.

    Call this in test fixtures to ensure clean state between tests.
    """
    get_payment_service.cache_clear()
    get_webhook_reconciler.cache_clear()
    get_booking_service.cache_clear()
    get_notification_service.cache_clear()
    get_seat_assignment_service.cache_clear()
    get_payment_ledger.cache_clear()
    get_booking_repository.cache_clear()
    get_stripe_service.cache_clear()
    get_paymob_service.cache_clear()
    reset_dynamodb_service()
