"""Pydantic models for flightpay bookings, payments and webhooks."""

from .booking import (
    BaggageOption,
    Booking,
    BookingCreate,
    ContactDetails,
    FlightLeg,
    Traveller,
    is_valid_booking_id,
)
from .enums import (
    BookingPaymentStatus,
    BookingStatus,
    BookingType,
    CabinClass,
    FlightType,
    PaymentMethod,
    PaymentOutcome,
    PaymentProvider,
    PaymentStatus,
    ProcessingResult,
    TravelerType,
    VerificationMode,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    BookingError,
    ErrorCode,
    ErrorResponse,
    ProviderError,
    ProviderRequestError,
    ProviderUnavailableError,
    WebhookVerificationError,
)
from .payment import (
    PaymentCreate,
    PaymentHandle,
    PaymentPatch,
    PaymentRecord,
    PaymentStatusView,
    RemoteStatus,
)
from .webhook import (
    PaymentFailed,
    PaymentPending,
    PaymentSucceeded,
    ProviderEvent,
    ReconciliationResult,
)

__all__ = [
    # Enums
    "BookingPaymentStatus",
    "BookingStatus",
    "BookingType",
    "CabinClass",
    "FlightType",
    "PaymentMethod",
    "PaymentOutcome",
    "PaymentProvider",
    "PaymentStatus",
    "ProcessingResult",
    "TravelerType",
    "VerificationMode",
    # Booking
    "BaggageOption",
    "Booking",
    "BookingCreate",
    "ContactDetails",
    "FlightLeg",
    "Traveller",
    "is_valid_booking_id",
    # Payment
    "PaymentCreate",
    "PaymentHandle",
    "PaymentPatch",
    "PaymentRecord",
    "PaymentStatusView",
    "RemoteStatus",
    # Webhook
    "PaymentFailed",
    "PaymentPending",
    "PaymentSucceeded",
    "ProviderEvent",
    "ReconciliationResult",
    # Errors
    "BookingError",
    "ErrorCode",
    "ErrorResponse",
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "ProviderError",
    "ProviderRequestError",
    "ProviderUnavailableError",
    "WebhookVerificationError",
]
