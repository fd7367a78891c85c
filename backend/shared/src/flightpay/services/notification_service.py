"""Booking emails sent through Amazon SES.

Notifications are fire-and-forget: a failed send is logged and never
interrupts the booking or payment operation that triggered it.
"""

import logging
from typing import Any

import boto3

from flightpay.config import Settings, get_settings
from flightpay.models import Booking

logger = logging.getLogger(__name__)


class NotificationService:
    """Sends booking confirmation and cancellation emails."""

    def __init__(self, settings: Settings | None = None, ses_client: Any | None = None) -> None:
        """Initialize the SES client.

        Args:
            settings: Runtime settings. Defaults to get_settings().
            ses_client: Preconfigured boto3 SES client (tests).
        """
        self._settings = settings or get_settings()
        self._ses = ses_client or boto3.client("ses", region_name=self._settings.ses_region)

    def send_booking_confirmation(self, booking: Booking) -> bool:
        """Email the traveller that their booking is paid and confirmed.

        Returns:
            True if SES accepted the message.
        """
        subject = f"Booking confirmed: {booking.booking_ref}"
        lines = [
            f"Your booking {booking.booking_ref} is confirmed.",
            "",
            f"Route: {self._route(booking)}",
            f"Total paid: {booking.total_price} {booking.currency}",
        ]
        seats = [
            f"{t.first_name} {t.last_name}: {t.seat_number}"
            for t in booking.travellers
            if t.seat_number
        ]
        if seats:
            lines += ["", "Seats:", *seats]
        return self._send(booking, subject, "\n".join(lines))

    def send_booking_cancelled(self, booking: Booking, reason: str | None = None) -> bool:
        """Email the traveller that their booking was cancelled.

        Returns:
            True if SES accepted the message.
        """
        subject = f"Booking cancelled: {booking.booking_ref}"
        lines = [f"Your booking {booking.booking_ref} ({self._route(booking)}) has been cancelled."]
        if reason:
            lines.append(f"Reason: {reason}")
        return self._send(booking, subject, "\n".join(lines))

    def _route(self, booking: Booking) -> str:
        if booking.flight_data:
            outbound = booking.flight_data[0]
            return f"{outbound.origin_airport_code} - {outbound.destination_airport_code} (round trip)"
        return f"{booking.origin_airport_code} - {booking.destination_airport_code}"

    def _send(self, booking: Booking, subject: str, text_body: str) -> bool:
        try:
            self._ses.send_email(
                Source=self._settings.notification_sender,
                Destination={"ToAddresses": [booking.contact_details.email]},
                Message={
                    "Subject": {"Data": subject, "Charset": "UTF-8"},
                    "Body": {"Text": {"Data": text_body, "Charset": "UTF-8"}},
                },
            )
        except Exception as e:
            logger.error("Failed to send '%s' for booking %s: %s", subject, booking.booking_id, e)
            return False
        logger.info("Sent '%s' for booking %s", subject, booking.booking_id)
        return True
