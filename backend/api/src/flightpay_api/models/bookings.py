"""API models for booking endpoints.

The create request body is flightpay.models.BookingCreate; the owner's user
ID is derived from the x-user-sub header, never from the body.
"""

from pydantic import BaseModel, ConfigDict, Field

from flightpay.models import Booking, BookingPaymentStatus, BookingStatus


class BookingCreatedResponse(BaseModel):
    """Result of creating a booking."""

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "booking_id": "BKG-3F2A9C1B7D4E",
                    "booking_ref": "AB123456",
                    "status": "pending",
                    "payment_status": "pending",
                }
            ]
        },
    )

    booking_id: str
    booking_ref: str
    status: BookingStatus
    payment_status: BookingPaymentStatus

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingCreatedResponse":
        return cls(
            booking_id=booking.booking_id,
            booking_ref=booking.booking_ref,
            status=booking.status,
            payment_status=booking.payment_status,
        )


class BookingListResponse(BaseModel):
    """The caller's bookings, newest first."""

    bookings: list[Booking] = Field(..., description="Bookings owned by the caller")
    total_count: int = Field(..., ge=0)


class CancelBookingRequest(BaseModel):
    """Request to cancel a confirmed booking."""

    model_config = ConfigDict(
        json_schema_extra={"examples": [{"reason": "Change of plans"}, {}]},
    )

    reason: str | None = Field(default=None, max_length=500)


class CancellationResponse(BaseModel):
    """Booking cancellation result.

    Cancelling does not refund; use POST /api/payments/refund for that.
    """

    booking_id: str
    booking_ref: str
    status: BookingStatus
    payment_status: BookingPaymentStatus
    cancellation_reason: str | None = None
