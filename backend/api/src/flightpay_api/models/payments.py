"""API models for payment endpoints."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from flightpay.models import PaymentProvider, PaymentRecord


class PaymentHandleRequest(BaseModel):
    """Request a client-side payment handle for a booking.

    The amount is checked against the booking total before any provider is
    contacted.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "booking_id": "BKG-3F2A9C1B7D4E",
                    "amount": "1500.00",
                    "currency": "USD",
                    "provider": "stripe",
                }
            ]
        },
    )

    booking_id: str = Field(..., examples=["BKG-3F2A9C1B7D4E"])
    amount: Decimal = Field(..., gt=0, description="Amount in major units")
    currency: str = Field(..., min_length=3, max_length=3)
    provider: PaymentProvider = PaymentProvider.STRIPE
    email: EmailStr | None = Field(default=None, description="Billing email override")
    phone_number: str | None = Field(default=None, description="Billing phone override")


class RefundRequest(BaseModel):
    """Refund all or part of a booking's completed payment."""

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"booking_id": "BKG-3F2A9C1B7D4E"},
                {"booking_id": "BKG-3F2A9C1B7D4E", "amount": "500.00", "reason": "Seat downgrade"},
            ]
        },
    )

    booking_id: str
    amount: Decimal | None = Field(default=None, gt=0, description="Defaults to the full amount")
    reason: str | None = Field(default=None, max_length=500)


class PaymentDetailsResponse(BaseModel):
    """Every ledger record for a booking, newest first."""

    booking_id: str
    payments: list[PaymentRecord]
    total_count: int = Field(..., ge=0)
