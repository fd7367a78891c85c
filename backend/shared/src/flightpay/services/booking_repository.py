"""DynamoDB persistence for bookings.

Bookings are only ever changed through conditional updates. Callers pass
the condition describing the state they expect; a lost race comes back as
None instead of an exception.
"""

import datetime as dt
from typing import Any

from boto3.dynamodb.conditions import Key

from flightpay.models import Booking, BookingStatus

from .dynamodb import DynamoDBService


def booking_ref_guard_key(booking_ref: str) -> str:
    """Uniqueness guard key for a booking reference."""
    return f"booking_ref#{booking_ref}"


def sortable_timestamp(value: dt.datetime) -> str:
    """Fixed-width UTC timestamp used for created_at sort keys.

    String order of these values is time order, which range queries on the
    GSIs depend on.
    """
    return value.astimezone(dt.UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class BookingRepository:
    """Reads and guarded writes against the bookings table."""

    BOOKINGS_TABLE = "bookings"
    USER_INDEX = "user_id-index"
    STATUS_INDEX = "status-created_at-index"

    def __init__(self, db: DynamoDBService) -> None:
        """Initialize the repository.

        Args:
            db: DynamoDB service instance
        """
        self.db = db

    def create(self, booking: Booking) -> bool:
        """Insert a booking together with its booking_ref guard.

        Returns:
            False if the booking ID or booking_ref is already taken.
        """
        return self.db.put_with_unique_keys(
            self.BOOKINGS_TABLE,
            self._booking_to_item(booking),
            "booking_id",
            [booking_ref_guard_key(booking.booking_ref)],
        )

    def get(self, booking_id: str) -> Booking | None:
        """Get a booking by ID."""
        item = self.db.get_item(self.BOOKINGS_TABLE, {"booking_id": booking_id})
        return self._item_to_booking(item) if item else None

    def list_for_user(self, user_id: str) -> list[Booking]:
        """Get a user's bookings, newest first."""
        items = self.db.query_by_gsi(
            self.BOOKINGS_TABLE,
            self.USER_INDEX,
            "user_id",
            user_id,
            scan_index_forward=False,
        )
        return [self._item_to_booking(item) for item in items]

    def list_by_status_created_before(
        self,
        status: BookingStatus,
        cutoff: dt.datetime,
    ) -> list[Booking]:
        """Get bookings in a status that were created before a cutoff, oldest first."""
        items = self.db.query_by_gsi(
            self.BOOKINGS_TABLE,
            self.STATUS_INDEX,
            "status",
            status.value,
            sort_key_condition=Key("created_at").lt(sortable_timestamp(cutoff)),
        )
        return [self._item_to_booking(item) for item in items]

    def conditional_update(
        self,
        booking_id: str,
        changes: dict[str, Any],
        condition: str,
        condition_values: dict[str, Any] | None = None,
    ) -> Booking | None:
        """Set fields on a booking if a condition on its current state holds.

        The condition may refer to ``#status`` and ``#payment_status``.
        ``updated_at`` is always refreshed. None values are skipped.

        Args:
            booking_id: Booking to update
            changes: Attribute name to new value
            condition: DynamoDB condition expression
            condition_values: Values referenced by the condition

        Returns:
            The updated booking, or None if the condition failed
        """
        names = {
            placeholder: attribute
            for placeholder, attribute in (("#status", "status"), ("#payment_status", "payment_status"))
            if placeholder in condition
        }
        values: dict[str, Any] = dict(condition_values or {})
        sets: list[str] = []
        fields = {k: v for k, v in changes.items() if v is not None}
        fields["updated_at"] = dt.datetime.now(dt.UTC)
        for i, (field, value) in enumerate(fields.items()):
            placeholder = f"#f{i}"
            names[placeholder] = field
            values[f":v{i}"] = value
            sets.append(f"{placeholder} = :v{i}")

        attrs = self.db.update_item(
            self.BOOKINGS_TABLE,
            {"booking_id": booking_id},
            "SET " + ", ".join(sets),
            values,
            names,
            condition_expression=f"attribute_exists(booking_id) AND ({condition})",
        )
        return self._item_to_booking(attrs) if attrs else None

    def _booking_to_item(self, booking: Booking) -> dict[str, Any]:
        """Convert Booking model to DynamoDB item."""
        item: dict[str, Any] = booking.model_dump(mode="json", exclude_none=True)
        # Keep money as Decimal rather than its JSON string form
        item["total_price"] = booking.total_price
        item["created_at"] = sortable_timestamp(booking.created_at)
        return item

    def _item_to_booking(self, item: dict[str, Any]) -> Booking:
        """Convert DynamoDB item to Booking model."""
        return Booking.model_validate(item)
