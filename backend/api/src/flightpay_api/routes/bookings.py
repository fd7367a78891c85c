"""Booking endpoints.

Provides REST endpoints for:
- Creating a booking (pending until paid)
- Listing and reading the caller's bookings
- Cancelling a confirmed booking

All endpoints require the x-user-sub header set by the API Gateway
authorizer. A booking is only visible to the user who created it.
"""

from fastapi import APIRouter, Depends
from starlette.status import HTTP_201_CREATED

from flightpay.models import Booking, BookingCreate
from flightpay.services.booking_service import BookingService

from flightpay_api.dependencies import get_booking_service
from flightpay_api.models.bookings import (
    BookingCreatedResponse,
    BookingListResponse,
    CancelBookingRequest,
    CancellationResponse,
)
from flightpay_api.security import get_current_user_id

router = APIRouter(tags=["bookings"])


@router.post(
    "/bookings",
    summary="Create booking",
    description="""
Create a pending booking and assign seats.

**Notes:**
- ONE_WAY bookings use the flat flight fields
- ROUND_TRIP bookings need exactly one OUTBOUND and one RETURN leg in
  `flight_data`, with the return departing after the outbound arrives
- The booking expires if it is not paid within the booking timeout
""",
    response_model=BookingCreatedResponse,
    status_code=HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid itinerary or request body"},
        401: {"description": "x-user-sub header missing"},
        409: {"description": "Booking reference already in use"},
    },
)
def create_booking(
    body: BookingCreate,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
) -> BookingCreatedResponse:
    booking = service.create_booking(user_id, body)
    return BookingCreatedResponse.from_booking(booking)


@router.get(
    "/bookings",
    summary="List my bookings",
    response_model=BookingListResponse,
    responses={401: {"description": "x-user-sub header missing"}},
)
def list_bookings(
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
) -> BookingListResponse:
    """List the caller's bookings, newest first."""
    bookings = service.get_user_bookings(user_id)
    return BookingListResponse(bookings=bookings, total_count=len(bookings))


@router.get(
    "/bookings/{booking_id}",
    summary="Get booking",
    response_model=Booking,
    responses={
        401: {"description": "x-user-sub header missing"},
        403: {"description": "Booking belongs to another user"},
        404: {"description": "Booking not found"},
    },
)
def get_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
) -> Booking:
    return service.get_booking_for_user(booking_id, user_id)


@router.post(
    "/bookings/{booking_id}/cancel",
    summary="Cancel booking",
    description="""
Cancel a confirmed booking.

Pending bookings cannot be cancelled here; they expire on their own if
unpaid. Cancelling does not refund the payment.
""",
    response_model=CancellationResponse,
    responses={
        400: {"description": "Booking not confirmed or already cancelled"},
        401: {"description": "x-user-sub header missing"},
        403: {"description": "Booking belongs to another user"},
        404: {"description": "Booking not found"},
    },
)
def cancel_booking(
    booking_id: str,
    body: CancelBookingRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
) -> CancellationResponse:
    reason = body.reason if body else None
    booking = service.cancel_booking(booking_id, user_id, reason)
    return CancellationResponse(
        booking_id=booking.booking_id,
        booking_ref=booking.booking_ref,
        status=booking.status,
        payment_status=booking.payment_status,
        cancellation_reason=booking.cancellation_reason,
    )
