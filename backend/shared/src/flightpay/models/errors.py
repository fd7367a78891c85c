"""Standard error codes for flightpay.

Every domain failure is raised as a BookingError carrying one of these codes.
The API layer maps codes to HTTP statuses and renders an ErrorResponse.
Provider clients raise ProviderError subclasses, which the lifecycle services
translate into BookingError before they reach the caller.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Stable error codes exposed to API clients."""

    # Validation (ERR_VAL_*)
    VALIDATION_FAILED = "ERR_VAL_001"
    INVALID_ITINERARY = "ERR_VAL_002"
    AMOUNT_MISMATCH = "ERR_VAL_003"
    UNSUPPORTED_PROVIDER = "ERR_VAL_004"

    # Booking state (ERR_BKG_*)
    BOOKING_NOT_FOUND = "ERR_BKG_001"
    BOOKING_NOT_CANCELLABLE = "ERR_BKG_002"
    BOOKING_ALREADY_CANCELLED = "ERR_BKG_003"
    BOOKING_NOT_PAYABLE = "ERR_BKG_004"
    BOOKING_REF_CONFLICT = "ERR_BKG_005"

    # Authentication / authorization (ERR_AUTH_*)
    AUTH_REQUIRED = "ERR_AUTH_001"
    UNAUTHORIZED = "ERR_AUTH_002"

    # Payments and refunds (ERR_PAY_*)
    PAYMENT_NOT_FOUND = "ERR_PAY_001"
    REFUND_NOT_ALLOWED = "ERR_PAY_002"
    REFUND_EXCEEDS_PAYMENT = "ERR_PAY_003"
    PROVIDER_REQUEST_REJECTED = "ERR_PAY_004"
    PROVIDER_UNAVAILABLE = "ERR_PAY_005"
    REFUND_IN_PROGRESS = "ERR_PAY_006"
    REFUND_TRANSACTION_UNKNOWN = "ERR_PAY_007"

    # Webhooks (ERR_WHK_*)
    INVALID_WEBHOOK_SIGNATURE = "ERR_WHK_001"
    MALFORMED_WEBHOOK = "ERR_WHK_002"
    WEBHOOK_BOOKING_UNRESOLVED = "ERR_WHK_003"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_FAILED: "The request is invalid",
    ErrorCode.INVALID_ITINERARY: "The flight itinerary is invalid for this booking type",
    ErrorCode.AMOUNT_MISMATCH: "Payment amount does not match the booking total",
    ErrorCode.UNSUPPORTED_PROVIDER: "Payment provider is not supported",
    ErrorCode.BOOKING_NOT_FOUND: "Booking not found",
    ErrorCode.BOOKING_NOT_CANCELLABLE: "Only confirmed bookings can be cancelled",
    ErrorCode.BOOKING_ALREADY_CANCELLED: "Booking is already cancelled",
    ErrorCode.BOOKING_NOT_PAYABLE: "Booking is not in a payable state",
    ErrorCode.BOOKING_REF_CONFLICT: "Booking reference is already in use",
    ErrorCode.AUTH_REQUIRED: "Authentication required to perform this action",
    ErrorCode.UNAUTHORIZED: "You are not authorized to access this booking",
    ErrorCode.PAYMENT_NOT_FOUND: "Payment not found",
    ErrorCode.REFUND_NOT_ALLOWED: "Only completed payments can be refunded",
    ErrorCode.REFUND_EXCEEDS_PAYMENT: "Refund amount exceeds the original payment",
    ErrorCode.PROVIDER_REQUEST_REJECTED: "The payment provider rejected the request",
    ErrorCode.PROVIDER_UNAVAILABLE: "The payment provider is temporarily unavailable",
    ErrorCode.REFUND_IN_PROGRESS: "A refund for this payment is already in progress",
    ErrorCode.REFUND_TRANSACTION_UNKNOWN: "The payment has no provider transaction to refund yet",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Invalid webhook signature",
    ErrorCode.MALFORMED_WEBHOOK: "Webhook payload is malformed",
    ErrorCode.WEBHOOK_BOOKING_UNRESOLVED: "Webhook does not reference a known booking",
}

# Recovery suggestions for API clients
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_FAILED: "Check the request fields and try again",
    ErrorCode.INVALID_ITINERARY: "Round trips need one OUTBOUND and one RETURN leg in order",
    ErrorCode.AMOUNT_MISMATCH: "Request payment for the exact booking total and currency",
    ErrorCode.UNSUPPORTED_PROVIDER: "Use stripe or paymob",
    ErrorCode.BOOKING_NOT_FOUND: "Verify the booking ID",
    ErrorCode.BOOKING_NOT_CANCELLABLE: "Wait for payment confirmation before cancelling",
    ErrorCode.BOOKING_ALREADY_CANCELLED: "No action needed",
    ErrorCode.BOOKING_NOT_PAYABLE: "Check the booking status before paying",
    ErrorCode.BOOKING_REF_CONFLICT: "Retry the booking request",
    ErrorCode.AUTH_REQUIRED: "Sign in and retry",
    ErrorCode.UNAUTHORIZED: "Use the account that created the booking",
    ErrorCode.PAYMENT_NOT_FOUND: "Verify the booking has a payment",
    ErrorCode.REFUND_NOT_ALLOWED: "Check the payment status",
    ErrorCode.REFUND_EXCEEDS_PAYMENT: "Request a refund up to the paid amount",
    ErrorCode.PROVIDER_REQUEST_REJECTED: "Check the payment details or try a different method",
    ErrorCode.PROVIDER_UNAVAILABLE: "Try again in a few minutes",
    ErrorCode.REFUND_IN_PROGRESS: "Wait for the current refund to finish",
    ErrorCode.REFUND_TRANSACTION_UNKNOWN: "Sync the payment status and try again once the provider reports the transaction",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Verify webhook secret configuration",
    ErrorCode.MALFORMED_WEBHOOK: "Send the provider's original webhook body",
    ErrorCode.WEBHOOK_BOOKING_UNRESOLVED: "Check the merchant order ID on the provider side",
}


class ErrorResponse(BaseModel):
    """Standard error body returned by the API."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, str]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error

        Returns:
            An ErrorResponse with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            message=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class BookingError(Exception):
    """Exception raised by booking and payment operations."""

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ):
        self.code = code
        self.message = ERROR_MESSAGES[code]
        self.recovery = ERROR_RECOVERY[code]
        self.details = details
        super().__init__(self.message)

    def to_error_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse body."""
        return ErrorResponse.from_code(self.code, self.details)


class ProviderError(Exception):
    """Base class for payment provider failures."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: int | None = None,
        provider_error_code: str | None = None,
    ) -> None:
        """Initialize with message and provider context.

        Args:
            message: Human-readable error message.
            provider: Provider name (stripe, paymob).
            status_code: HTTP status returned by the provider, if any.
            provider_error_code: Provider-specific error code if available.
        """
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.provider_error_code = provider_error_code


class ProviderRequestError(ProviderError):
    """The provider rejected the request (4xx). Never retried."""


class ProviderUnavailableError(ProviderError):
    """Connection failure, timeout or 5xx after retries were exhausted."""


class WebhookVerificationError(ProviderError):
    """Webhook signature did not match the payload."""


def provider_error_to_booking_error(error: ProviderError) -> BookingError:
    """Translate a provider failure into the matching domain error.

    Args:
        error: Provider exception raised by a gateway client.

    Returns:
        BookingError with a PROVIDER_* code and provider context in details.
    """
    details = {"provider": error.provider, "message": str(error)}
    if error.provider_error_code:
        details["provider_error_code"] = error.provider_error_code
    if isinstance(error, ProviderUnavailableError):
        return BookingError(ErrorCode.PROVIDER_UNAVAILABLE, details)
    return BookingError(ErrorCode.PROVIDER_REQUEST_REJECTED, details)


# Stripe decline codes to user-friendly message mapping
STRIPE_ERROR_MESSAGES: dict[str, str] = {
    "card_declined": "Your card was declined. Please try a different card.",
    "expired_card": "Your card has expired. Please use a different card.",
    "insufficient_funds": "Your card has insufficient funds. Please try a different card.",
    "incorrect_cvc": "The security code (CVC) is incorrect. Please check and try again.",
    "processing_error": "A processing error occurred. Please try again.",
    "authentication_required": "Your bank requires additional authentication.",
    "generic_decline": "Your card was declined. Please try a different card.",
}


def get_user_friendly_stripe_message(
    stripe_error_code: Optional[str],
    default_message: str = "Payment could not be processed. Please try again.",
) -> str:
    """Get a user-friendly message for a Stripe error code.

    Args:
        stripe_error_code: The Stripe error code (e.g., 'card_declined').
        default_message: Message to use if error code is unknown.

    Returns:
        User-friendly error message.
    """
    if stripe_error_code and stripe_error_code in STRIPE_ERROR_MESSAGES:
        return STRIPE_ERROR_MESSAGES[stripe_error_code]
    return default_message
