"""Booking lifecycle: creation, reads, cancellation and payment timeouts.

Booking state only moves through conditional updates, so a webhook, a user
request and the expiry sweep touching the same booking cannot overwrite
each other. Payment-driven transitions live in WebhookReconciler.
"""

import datetime as dt
import random
import string
import uuid

from flightpay.config import Settings, get_settings
from flightpay.models import (
    Booking,
    BookingCreate,
    BookingError,
    BookingPaymentStatus,
    BookingStatus,
    BookingType,
    ErrorCode,
    FlightType,
    is_valid_booking_id,
)
from flightpay.utils.logging import get_logger

from .booking_repository import BookingRepository
from .notification_service import NotificationService
from .seat_assignment import SeatAssignmentService

logger = get_logger(__name__)

PAYMENT_TIMEOUT_REASON = "Payment timeout"


def generate_booking_ref() -> str:
    """Generate a booking reference like AB123456."""
    letters = "".join(random.choices(string.ascii_uppercase, k=2))
    digits = "".join(random.choices(string.digits, k=6))
    return f"{letters}{digits}"


def validate_itinerary(request: BookingCreate) -> None:
    """Check the itinerary matches the booking type.

    Raises:
        BookingError: INVALID_ITINERARY with the failing rule in details.
    """

    def invalid(reason: str) -> BookingError:
        return BookingError(ErrorCode.INVALID_ITINERARY, {"reason": reason})

    if request.booking_type == BookingType.ROUND_TRIP:
        legs = request.flight_data or []
        if len(legs) != 2:
            raise invalid("Round-trip bookings must have exactly 2 flights")
        outbound = next((leg for leg in legs if leg.type_of_flight == FlightType.OUTBOUND), None)
        inbound = next((leg for leg in legs if leg.type_of_flight == FlightType.RETURN), None)
        if outbound is None or inbound is None:
            raise invalid("Round-trip bookings must have one OUTBOUND and one RETURN flight")
        if inbound.departure_date <= outbound.arrival_date:
            raise invalid("Return flight must depart after the outbound flight arrives")
        return

    required = {
        "flight_id": request.flight_id,
        "origin_airport_code": request.origin_airport_code,
        "destination_airport_code": request.destination_airport_code,
        "departure_date": request.departure_date,
        "arrival_date": request.arrival_date,
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        raise invalid(f"One-way bookings require: {', '.join(missing)}")


class BookingService:
    """Owns booking state outside of payment reconciliation."""

    def __init__(
        self,
        repository: BookingRepository,
        seats: SeatAssignmentService,
        notifications: NotificationService,
        settings: Settings | None = None,
    ) -> None:
        """Initialize booking service.

        Args:
            repository: Booking persistence
            seats: Seat assignment collaborator
            notifications: Email collaborator
            settings: Runtime settings (booking timeout)
        """
        self.repository = repository
        self.seats = seats
        self.notifications = notifications
        self.settings = settings or get_settings()

    def create_booking(self, user_id: str, request: BookingCreate) -> Booking:
        """Create a pending booking and assign seats.

        Args:
            user_id: Owner of the booking
            request: Itinerary, travellers and price

        Returns:
            The stored booking

        Raises:
            BookingError: INVALID_ITINERARY, or BOOKING_REF_CONFLICT if the
                reference is taken.
        """
        validate_itinerary(request)

        now = dt.datetime.now(dt.UTC)
        booking = Booking(
            **request.model_dump(exclude={"booking_ref", "flight_data"}),
            booking_id=f"BKG-{uuid.uuid4().hex[:12].upper()}",
            booking_ref=request.booking_ref or generate_booking_ref(),
            flight_data=request.flight_data or [],
            user_id=user_id,
            status=BookingStatus.PENDING,
            payment_status=BookingPaymentStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

        if not self.repository.create(booking):
            logger.warning("Booking reference %s already in use", booking.booking_ref)
            raise BookingError(ErrorCode.BOOKING_REF_CONFLICT, {"booking_ref": booking.booking_ref})

        logger.info(
            "Created %s booking %s (%s) for user %s",
            booking.booking_type.value,
            booking.booking_id,
            booking.booking_ref,
            user_id,
        )
        return self._assign_seats(booking)

    def _assign_seats(self, booking: Booking) -> Booking:
        """Best-effort seat assignment; failures leave the booking seatless."""
        try:
            assignments = self.seats.assign_seats(booking.travellers, booking.cabin_class)
            if not assignments:
                return booking
            travellers = self.seats.apply_assignments(booking.travellers, assignments)
            updated = self.repository.conditional_update(
                booking.booking_id,
                {"travellers": travellers},
                "#status <> :cancelled",
                {":cancelled": BookingStatus.CANCELLED.value},
            )
            return updated or booking
        except Exception as e:
            logger.error("Seat assignment failed for booking %s: %s", booking.booking_id, e)
            return booking

    def get_booking_by_id(self, booking_id: str) -> Booking:
        """Get a booking by ID.

        Raises:
            BookingError: BOOKING_NOT_FOUND if the ID is malformed or unknown.
        """
        if not is_valid_booking_id(booking_id):
            raise BookingError(ErrorCode.BOOKING_NOT_FOUND, {"booking_id": booking_id})
        booking = self.repository.get(booking_id)
        if booking is None:
            raise BookingError(ErrorCode.BOOKING_NOT_FOUND, {"booking_id": booking_id})
        return booking

    def get_booking_for_user(self, booking_id: str, user_id: str) -> Booking:
        """Get a booking, checking the caller owns it.

        Raises:
            BookingError: BOOKING_NOT_FOUND or UNAUTHORIZED.
        """
        booking = self.get_booking_by_id(booking_id)
        if booking.user_id != user_id:
            logger.warning("User %s denied access to booking %s", user_id, booking_id)
            raise BookingError(ErrorCode.UNAUTHORIZED, {"booking_id": booking_id})
        return booking

    def get_user_bookings(self, user_id: str) -> list[Booking]:
        """Get the user's bookings, newest first."""
        return self.repository.list_for_user(user_id)

    def cancel_booking(
        self,
        booking_id: str,
        user_id: str,
        reason: str | None = None,
    ) -> Booking:
        """Cancel a confirmed booking.

        Refunds are a separate operation; cancelling does not move money.

        Raises:
            BookingError: UNAUTHORIZED, BOOKING_ALREADY_CANCELLED or
                BOOKING_NOT_CANCELLABLE.
        """
        booking = self.get_booking_for_user(booking_id, user_id)
        if booking.status == BookingStatus.CANCELLED:
            raise BookingError(ErrorCode.BOOKING_ALREADY_CANCELLED, {"booking_id": booking_id})
        if booking.status != BookingStatus.CONFIRMED:
            raise BookingError(
                ErrorCode.BOOKING_NOT_CANCELLABLE,
                {"booking_id": booking_id, "status": booking.status.value},
            )

        now = dt.datetime.now(dt.UTC)
        cancelled = self.repository.conditional_update(
            booking_id,
            {
                "status": BookingStatus.CANCELLED,
                "cancelled_at": now,
                "cancellation_reason": reason,
            },
            "#status = :confirmed",
            {":confirmed": BookingStatus.CONFIRMED.value},
        )
        if cancelled is None:
            # Lost a race; report against the state that won
            current = self.get_booking_by_id(booking_id)
            code = (
                ErrorCode.BOOKING_ALREADY_CANCELLED
                if current.status == BookingStatus.CANCELLED
                else ErrorCode.BOOKING_NOT_CANCELLABLE
            )
            raise BookingError(code, {"booking_id": booking_id})

        logger.info("Booking %s cancelled by user %s", booking_id, user_id)
        self.notifications.send_booking_cancelled(cancelled, reason)
        return cancelled

    def expire_pending_bookings(self, now: dt.datetime | None = None) -> int:
        """Cancel bookings left unpaid past the booking timeout.

        Only bookings still pending/pending are touched. A booking whose
        payment is processing, or that a webhook confirmed meanwhile, is
        skipped by the update condition.

        Args:
            now: Reference time (defaults to current UTC time)

        Returns:
            Number of bookings expired by this sweep
        """
        now = now or dt.datetime.now(dt.UTC)
        cutoff = now - dt.timedelta(minutes=self.settings.booking_timeout_minutes)
        candidates = self.repository.list_by_status_created_before(BookingStatus.PENDING, cutoff)

        expired = 0
        for booking in candidates:
            try:
                cancelled = self.repository.conditional_update(
                    booking.booking_id,
                    {
                        "status": BookingStatus.CANCELLED,
                        "payment_status": BookingPaymentStatus.FAILED,
                        "cancelled_at": now,
                        "cancellation_reason": PAYMENT_TIMEOUT_REASON,
                    },
                    "#status = :pending AND #payment_status = :pending",
                    {":pending": BookingStatus.PENDING.value},
                )
            except Exception as e:
                logger.error("Failed to expire booking %s: %s", booking.booking_id, e)
                continue
            if cancelled is None:
                logger.debug("Booking %s changed since query, not expiring", booking.booking_id)
                continue
            expired += 1
            logger.info("Booking %s expired after payment timeout", booking.booking_id)
            self.notifications.send_booking_cancelled(cancelled, PAYMENT_TIMEOUT_REASON)

        if candidates:
            logger.info("Expiry sweep cancelled %d of %d stale pending bookings", expired, len(candidates))
        return expired
