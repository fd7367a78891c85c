"""Booking models: itinerary, travellers and the booking record."""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .enums import (
    BookingPaymentStatus,
    BookingStatus,
    BookingType,
    CabinClass,
    FlightType,
    PaymentProvider,
    TravelerType,
)

BOOKING_ID_PATTERN = re.compile(r"^BKG-[0-9A-F]{12}$")
BOOKING_REF_PATTERN = re.compile(r"^[A-Z]{2}\d{6}$")


def is_valid_booking_id(booking_id: str) -> bool:
    """Check a booking ID has the BKG-XXXXXXXXXXXX shape."""
    return bool(BOOKING_ID_PATTERN.match(booking_id or ""))


class BaggageOption(BaseModel):
    """Selected baggage allowance."""

    type: str = Field(..., min_length=1, examples=["checked"])
    weight: str = Field(..., min_length=1, examples=["23kg"])
    price: Decimal = Field(..., ge=0, examples=[Decimal("50.00")])


class FlightLeg(BaseModel):
    """One flight of a round-trip itinerary."""

    flight_id: str = Field(..., min_length=1, examples=["FL123456"])
    type_of_flight: FlightType = Field(..., description="OUTBOUND or RETURN")
    number_of_stops: int | None = Field(default=None, ge=0)
    origin_airport_code: str = Field(..., min_length=3, max_length=3, examples=["LGA"])
    destination_airport_code: str = Field(..., min_length=3, max_length=3, examples=["DAD"])
    origin_city: str | None = Field(default=None, examples=["New York"])
    destination_city: str | None = Field(default=None, examples=["Da Nang"])
    departure_date: datetime = Field(..., description="Scheduled departure")
    arrival_date: datetime = Field(..., description="Scheduled arrival")
    selected_baggage_option: BaggageOption | None = None


class Traveller(BaseModel):
    """A passenger on the booking."""

    first_name: str = Field(..., min_length=1, examples=["Ahmed"])
    last_name: str = Field(..., min_length=1, examples=["Mohamed"])
    birth_date: date
    traveler_type: TravelerType
    nationality: str = Field(..., min_length=2, examples=["Egyptian"])
    passport_number: str = Field(..., min_length=1, examples=["A12345678"])
    issuing_country: str = Field(..., min_length=2, examples=["Egypt"])
    expiry_date: date
    seat_number: str | None = Field(default=None, examples=["12C"])


class ContactDetails(BaseModel):
    """Contact used for booking notifications."""

    email: EmailStr
    phone: str = Field(..., min_length=6, examples=["+201234567890"])


class BookingCreate(BaseModel):
    """Request to create a booking.

    One-way bookings use the flat flight fields; round trips use flight_data.
    Cross-field itinerary rules are enforced by BookingService so they surface
    as INVALID_ITINERARY rather than schema errors.
    """

    booking_type: BookingType = BookingType.ONE_WAY
    booking_ref: str | None = Field(
        default=None,
        description="Optional caller-supplied reference (two letters + six digits)",
        examples=["AB123456"],
    )

    flight_data: list[FlightLeg] | None = None

    flight_id: str | None = None
    origin_airport_code: str | None = None
    destination_airport_code: str | None = None
    origin_city: str | None = None
    destination_city: str | None = None
    departure_date: datetime | None = None
    arrival_date: datetime | None = None
    number_of_stops: int | None = Field(default=None, ge=0)

    selected_baggage_option: BaggageOption | None = None
    cabin_class: CabinClass = CabinClass.ECONOMY

    total_price: Decimal = Field(..., gt=0, examples=[Decimal("1500.00")])
    currency: str = Field(..., min_length=3, max_length=3, examples=["USD"])

    travellers: list[Traveller] = Field(..., min_length=1)
    contact_details: ContactDetails

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @field_validator("booking_ref")
    @classmethod
    def _check_booking_ref(cls, value: str | None) -> str | None:
        if value is not None and not BOOKING_REF_PATTERN.match(value):
            raise ValueError("booking_ref must be two uppercase letters followed by six digits")
        return value


class Booking(BaseModel):
    """A flight booking and its payment state."""

    model_config = ConfigDict(use_enum_values=False)

    booking_id: str = Field(..., description="Unique booking ID", examples=["BKG-3F2A9C1B7D4E"])
    user_id: str = Field(..., description="Owning user (x-user-sub)")
    booking_ref: str = Field(..., description="Human-readable reference", examples=["AB123456"])
    booking_type: BookingType

    flight_data: list[FlightLeg] = Field(default_factory=list)
    flight_id: str | None = None
    origin_airport_code: str | None = None
    destination_airport_code: str | None = None
    origin_city: str | None = None
    destination_city: str | None = None
    departure_date: datetime | None = None
    arrival_date: datetime | None = None
    number_of_stops: int | None = None

    selected_baggage_option: BaggageOption | None = None
    cabin_class: CabinClass = CabinClass.ECONOMY

    travellers: list[Traveller]
    contact_details: ContactDetails

    total_price: Decimal = Field(..., description="Total in major units")
    currency: str

    status: BookingStatus = BookingStatus.PENDING
    payment_status: BookingPaymentStatus = BookingPaymentStatus.PENDING
    payment_provider: PaymentProvider | None = None
    payment_intent_id: str | None = Field(
        default=None,
        description="Latest provider transaction handle (PaymentIntent or Paymob order/transaction)",
    )
    payment_completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None

    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status == BookingStatus.CANCELLED

    def summary(self) -> dict[str, Any]:
        """Compact view used in notifications and API summaries."""
        return {
            "booking_id": self.booking_id,
            "booking_ref": self.booking_ref,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "total_price": str(self.total_price),
            "currency": self.currency,
        }
