"""Enumeration types for flightpay data models."""

from enum import Enum


class BookingStatus(str, Enum):
    """Lifecycle status of a booking."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class BookingPaymentStatus(str, Enum):
    """Payment status flag carried on the booking itself."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUND_PENDING = "refund_pending"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Status of a single payment attempt in the ledger."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DECLINED = "declined"
    REFUND_PENDING = "refund_pending"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PaymentProvider(str, Enum):
    """Payment processing providers."""

    STRIPE = "stripe"
    PAYMOB = "paymob"
    CASH = "cash"
    OTHER = "other"


class PaymentMethod(str, Enum):
    """Supported payment methods."""

    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    WALLET = "wallet"
    BANK_TRANSFER = "bank_transfer"
    CASH_ON_DELIVERY = "cash_on_delivery"
    OTHER = "other"


class BookingType(str, Enum):
    """Itinerary shape of a booking."""

    ONE_WAY = "ONE_WAY"
    ROUND_TRIP = "ROUND_TRIP"


class FlightType(str, Enum):
    """Direction of a flight leg within a round trip."""

    OUTBOUND = "OUTBOUND"
    RETURN = "RETURN"


class TravelerType(str, Enum):
    """Passenger category."""

    ADULT = "adult"
    CHILD = "child"
    INFANT = "infant"


class CabinClass(str, Enum):
    """Cabin class used for seat assignment."""

    ECONOMY = "economy"
    BUSINESS = "business"


class PaymentOutcome(str, Enum):
    """Normalized outcome of a provider event or remote status query."""

    SUCCESS = "SUCCESS"
    PENDING = "PENDING"
    FAILURE = "FAILURE"


class VerificationMode(str, Enum):
    """How webhook signature failures are treated."""

    STRICT = "strict"
    FALLBACK_ON_STRUCTURAL_MATCH = "fallback_on_structural_match"


class ProcessingResult(str, Enum):
    """Result of reconciling one webhook delivery."""

    SUCCESS = "success"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    IGNORED = "ignored"
