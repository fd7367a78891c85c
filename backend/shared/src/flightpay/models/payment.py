"""Payment ledger models."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import (
    BookingPaymentStatus,
    BookingStatus,
    PaymentMethod,
    PaymentOutcome,
    PaymentProvider,
    PaymentStatus,
)


class PaymentRecord(BaseModel):
    """One attempt to pay a booking through one provider.

    Amounts are stored in major units; providers see minor units.
    """

    payment_id: str = Field(..., description="Unique payment ID", examples=["PAY-1A2B3C4D5E6F"])
    booking_id: str = Field(..., description="Reference to Booking")
    user_id: str = Field(..., description="Paying user")
    amount: Decimal = Field(..., ge=0, description="Amount in major units")
    currency: str = Field(..., description="ISO currency code")
    provider: PaymentProvider
    method: PaymentMethod = PaymentMethod.CREDIT_CARD
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: str | None = Field(
        default=None,
        description="Provider transaction ID; unique across the ledger when set",
        examples=["pi_3ABC123DEF456", "192837465"],
    )
    provider_order_id: str | None = Field(
        default=None,
        description="Provider-side order ID (PaymentIntent for Stripe, order for Paymob)",
    )
    payment_key: str | None = Field(default=None, description="Client-side payment handle")
    provider_response: dict[str, Any] | None = None
    paid_at: datetime | None = None
    refunded_at: datetime | None = None
    refund_reason: str | None = None
    refunded_amount: Decimal | None = None
    failure_code: str | None = None
    failure_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_test: bool = False
    created_at: datetime
    updated_at: datetime


class PaymentCreate(BaseModel):
    """Data required to record a new payment attempt."""

    booking_id: str
    user_id: str
    amount: Decimal = Field(..., ge=0)
    currency: str
    provider: PaymentProvider
    method: PaymentMethod = PaymentMethod.CREDIT_CARD
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: str | None = None
    provider_order_id: str | None = None
    payment_key: str | None = None
    provider_response: dict[str, Any] | None = None
    failure_code: str | None = None
    failure_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_test: bool = False


class PaymentPatch(BaseModel):
    """Partial update applied to an existing payment record."""

    status: PaymentStatus
    provider_response: dict[str, Any] | None = None
    failure_code: str | None = None
    failure_message: str | None = None


class PaymentHandle(BaseModel):
    """Client-usable payment handle returned by a provider."""

    model_config = ConfigDict(strict=True)

    handle: str = Field(..., description="Client secret (Stripe) or payment key (Paymob)")
    expires_at: datetime | None = Field(default=None, description="Advisory expiry")
    provider_order_id: str
    provider: PaymentProvider
    payment_id: str | None = None
    integration_id: str | None = None


class RemoteStatus(BaseModel):
    """Status of a transaction as reported by the provider."""

    provider: PaymentProvider
    reference: str = Field(..., description="ID that was queried")
    native_status: str = Field(..., description="Provider's own status label")
    outcome: PaymentOutcome
    transaction_id: str | None = None
    amount_minor: int | None = None
    currency: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)


class PaymentStatusView(BaseModel):
    """Combined booking and payment status."""

    booking_id: str
    payment_status: BookingPaymentStatus
    booking_status: BookingStatus
    provider_status: str | None = None
    transaction_id: str | None = None
    payment_id: str | None = None
