"""Backend services for flightpay booking and payment reconciliation."""

from .booking_repository import BookingRepository
from .booking_service import BookingService
from .dynamodb import DynamoDBService, get_dynamodb_service, reset_dynamodb_service
from .gateway import PaymentGateway
from .notification_service import NotificationService
from .payment_ledger import PaymentLedger
from .payment_service import PaymentService
from .paymob_service import PaymobService, get_paymob_service
from .seat_assignment import SeatAssignment, SeatAssignmentService
from .ssm_service import SSMService, SSMServiceError, get_ssm_service
from .stripe_service import StripeService, get_stripe_service
from .webhook_reconciler import ReconcilerConfig, WebhookReconciler

__all__ = [
    "BookingRepository",
    "BookingService",
    "DynamoDBService",
    "get_dynamodb_service",
    "reset_dynamodb_service",
    "NotificationService",
    "PaymentGateway",
    "PaymentLedger",
    "PaymentService",
    "PaymobService",
    "get_paymob_service",
    "ReconcilerConfig",
    "SeatAssignment",
    "SeatAssignmentService",
    "SSMService",
    "SSMServiceError",
    "get_ssm_service",
    "StripeService",
    "get_stripe_service",
    "WebhookReconciler",
]
