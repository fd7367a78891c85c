"""Payment ledger: one record per attempt to pay a booking.

The ledger is the source of truth for money movement. Every write is either
an insert guarded by the record's uniqueness keys or an update guarded by
the record's current status, so concurrent webhook deliveries, sync calls
and payment requests can race without corrupting a record.
"""

import datetime as dt
import uuid
from decimal import Decimal
from typing import Any

from flightpay.models import (
    BookingError,
    ErrorCode,
    PaymentCreate,
    PaymentPatch,
    PaymentRecord,
    PaymentStatus,
)
from flightpay.utils.logging import get_logger, log_payment_operation
from flightpay.utils.money import to_minor_units

from .dynamodb import UNIQUE_KEYS_TABLE, DynamoDBService

logger = get_logger(__name__)

MAX_UPSERT_ATTEMPTS = 3

REFUND_STATUSES = frozenset({PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED})

# Statuses an upsert may never move away from
FINAL_STATUSES = (
    frozenset({PaymentStatus.COMPLETED, PaymentStatus.REFUND_PENDING}) | REFUND_STATUSES
)


def is_allowed_transition(current: PaymentStatus, new: PaymentStatus) -> bool:
    """Check whether an upsert may move a record from current to new.

    Completed and refunded records are never changed by an upsert; only the
    refund path moves a completed record. Nothing goes back to pending.
    A failed, declined, cancelled or expired attempt may still complete.
    """
    if current in FINAL_STATUSES:
        return False
    if new == PaymentStatus.PENDING:
        return current == PaymentStatus.PENDING
    return True


def transaction_guard_key(transaction_id: str) -> str:
    """Uniqueness guard key for a provider transaction ID."""
    return f"transaction_id#{transaction_id}"


class PaymentLedger:
    """Ledger of payment attempts stored in the payments table."""

    PAYMENTS_TABLE = "payments"
    BOOKING_INDEX = "booking_id-index"
    PROVIDER_ORDER_INDEX = "provider_order_id-index"

    def __init__(self, db: DynamoDBService) -> None:
        """Initialize the ledger.

        Args:
            db: DynamoDB service instance
        """
        self.db = db

    def _generate_payment_id(self) -> str:
        """Generate a payment ID like PAY-ABC123DEF456."""
        return f"PAY-{uuid.uuid4().hex[:12].upper()}"

    # Writes

    def create_payment(self, attempt: PaymentCreate) -> PaymentRecord:
        """Record a new payment attempt.

        When the attempt carries a transaction ID, the record and its
        uniqueness guard are written together. If another record already owns
        the transaction ID, the attempt is merged into it instead.

        Args:
            attempt: Payment attempt data

        Returns:
            The stored (or merged) PaymentRecord
        """
        record = self._build_record(attempt, attempt.status)

        if attempt.transaction_id:
            written = self.db.put_with_unique_keys(
                self.PAYMENTS_TABLE,
                self._record_to_item(record),
                "payment_id",
                [transaction_guard_key(attempt.transaction_id)],
            )
            if not written:
                logger.info(
                    "Transaction %s already recorded, merging attempt into existing record",
                    attempt.transaction_id,
                )
                return self.upsert_by_transaction_id(
                    attempt.transaction_id,
                    PaymentPatch(status=attempt.status, provider_response=attempt.provider_response),
                    defaults=attempt,
                )
        else:
            self.db.put_item(
                self.PAYMENTS_TABLE,
                self._record_to_item(record),
                condition_expression="attribute_not_exists(payment_id)",
            )

        log_payment_operation(
            logger,
            "create_payment",
            payment_id=record.payment_id,
            booking_id=record.booking_id,
            transaction_id=record.transaction_id,
            amount_minor=to_minor_units(record.amount, record.currency),
            status=record.status.value,
        )
        return record

    def upsert_by_transaction_id(
        self,
        transaction_id: str,
        patch: PaymentPatch,
        *,
        defaults: PaymentCreate,
    ) -> PaymentRecord:
        """Apply a status change to the record owning a transaction ID.

        The record is located by transaction ID. Failing that, the booking's
        pending record for the same provider order (with no transaction ID
        yet) is adopted. Failing that, a new record is created from defaults.
        The patch is then applied conditionally on the record's current
        status, retrying if a concurrent writer changed it first.

        Args:
            transaction_id: Provider transaction ID
            patch: Status and provider details to apply
            defaults: Data used when no record exists yet

        Returns:
            The record after the patch, or unchanged if the transition is not
            allowed (e.g. completed to processing).
        """
        record: PaymentRecord | None = None
        for attempt in range(MAX_UPSERT_ATTEMPTS):
            record = self.find_by_transaction_id(transaction_id)
            if record is None:
                record = self._adopt_pending_record(transaction_id, defaults)
            if record is None:
                created = self._create_for_transaction(transaction_id, patch, defaults)
                if created is not None:
                    return created
                continue

            if not is_allowed_transition(record.status, patch.status):
                logger.info(
                    "Ignoring %s -> %s for payment %s (transaction %s)",
                    record.status.value,
                    patch.status.value,
                    record.payment_id,
                    transaction_id,
                )
                return record

            updated = self._apply_patch(record, patch)
            if updated is not None:
                log_payment_operation(
                    logger,
                    "upsert_by_transaction_id",
                    payment_id=updated.payment_id,
                    booking_id=updated.booking_id,
                    transaction_id=transaction_id,
                    status=updated.status.value,
                    previous_status=record.status.value,
                )
                return updated
            logger.debug(
                "Concurrent update on payment %s, retrying (attempt %d)",
                record.payment_id,
                attempt + 1,
            )

        latest = self.find_by_transaction_id(transaction_id) or record
        if latest is None:
            raise RuntimeError(f"Could not record transaction {transaction_id}")
        logger.warning(
            "Gave up upserting transaction %s after %d attempts; status is %s",
            transaction_id,
            MAX_UPSERT_ATTEMPTS,
            latest.status.value,
        )
        return latest

    def update_payment(self, payment_id: str, patch: PaymentPatch) -> PaymentRecord:
        """Apply a guarded status change to a record addressed by payment ID.

        Used when only the provider order is known, before any transaction ID.

        Raises:
            BookingError: PAYMENT_NOT_FOUND if the record does not exist.
        """
        for _ in range(MAX_UPSERT_ATTEMPTS):
            record = self.get_payment(payment_id)
            if record is None:
                raise BookingError(ErrorCode.PAYMENT_NOT_FOUND, {"payment_id": payment_id})
            if not is_allowed_transition(record.status, patch.status):
                return record
            updated = self._apply_patch(record, patch)
            if updated is not None:
                log_payment_operation(
                    logger,
                    "update_payment",
                    payment_id=payment_id,
                    booking_id=updated.booking_id,
                    status=updated.status.value,
                    previous_status=record.status.value,
                )
                return updated

        latest = self.get_payment(payment_id)
        if latest is None:
            raise BookingError(ErrorCode.PAYMENT_NOT_FOUND, {"payment_id": payment_id})
        return latest

    def validate_refund(self, record: PaymentRecord, amount: Decimal | None) -> Decimal:
        """Check a refund request against the original payment.

        Args:
            record: Payment to refund
            amount: Requested amount in major units, None for a full refund

        Returns:
            The amount that will be refunded

        Raises:
            BookingError: REFUND_NOT_ALLOWED or REFUND_EXCEEDS_PAYMENT.
        """
        if record.status != PaymentStatus.COMPLETED:
            raise BookingError(
                ErrorCode.REFUND_NOT_ALLOWED,
                {"payment_id": record.payment_id, "status": record.status.value},
            )
        return self._check_refund_amount(record, amount)

    def claim_refund(self, record: PaymentRecord, amount: Decimal) -> PaymentRecord:
        """Move a completed payment to refund_pending before the provider is called.

        Only one caller wins the claim, so a payment is never sent to the
        provider for two refunds at once.

        Args:
            record: Completed payment to refund
            amount: Validated refund amount in major units

        Returns:
            The claimed record

        Raises:
            BookingError: REFUND_IN_PROGRESS if the payment is no longer completed.
        """
        attrs = self.db.update_item(
            self.PAYMENTS_TABLE,
            {"payment_id": record.payment_id},
            "SET #status = :pending, refunded_amount = :amount, updated_at = :now",
            {
                ":pending": PaymentStatus.REFUND_PENDING.value,
                ":completed": PaymentStatus.COMPLETED.value,
                ":amount": amount,
                ":now": dt.datetime.now(dt.UTC).isoformat(),
            },
            {"#status": "status"},  # status is a reserved word
            condition_expression="#status = :completed",
        )
        if attrs is None:
            raise BookingError(ErrorCode.REFUND_IN_PROGRESS, {"payment_id": record.payment_id})
        logger.info("Claimed payment %s for refund", record.payment_id)
        return self._item_to_record(attrs)

    def release_refund_claim(self, payment_id: str) -> None:
        """Put a refund_pending payment back to completed after the provider refused the refund."""
        attrs = self.db.update_item(
            self.PAYMENTS_TABLE,
            {"payment_id": payment_id},
            "SET #status = :completed, updated_at = :now REMOVE refunded_amount",
            {
                ":pending": PaymentStatus.REFUND_PENDING.value,
                ":completed": PaymentStatus.COMPLETED.value,
                ":now": dt.datetime.now(dt.UTC).isoformat(),
            },
            {"#status": "status"},
            condition_expression="#status = :pending",
        )
        if attrs is None:
            logger.warning("Payment %s was not refund_pending; claim not released", payment_id)

    def _check_refund_amount(self, record: PaymentRecord, amount: Decimal | None) -> Decimal:
        if amount is None:
            return record.amount
        if amount <= 0 or amount > record.amount:
            raise BookingError(
                ErrorCode.REFUND_EXCEEDS_PAYMENT,
                {"requested": str(amount), "paid": str(record.amount)},
            )
        return amount

    def process_refund(
        self,
        payment_id: str,
        amount: Decimal | None = None,
        reason: str | None = None,
    ) -> PaymentRecord:
        """Record a refund against a completed or refund_pending payment.

        Args:
            payment_id: Payment to refund
            amount: Refund amount in major units. None refunds in full.
            reason: Optional refund reason

        Returns:
            Updated record, refunded or partially_refunded
        """
        record = self.get_payment(payment_id)
        if record is None:
            raise BookingError(ErrorCode.PAYMENT_NOT_FOUND, {"payment_id": payment_id})
        if record.status not in (PaymentStatus.COMPLETED, PaymentStatus.REFUND_PENDING):
            raise BookingError(
                ErrorCode.REFUND_NOT_ALLOWED,
                {"payment_id": payment_id, "status": record.status.value},
            )
        refund_amount = self._check_refund_amount(record, amount)

        full = to_minor_units(refund_amount, record.currency) == to_minor_units(
            record.amount, record.currency
        )
        new_status = PaymentStatus.REFUNDED if full else PaymentStatus.PARTIALLY_REFUNDED
        now = dt.datetime.now(dt.UTC).isoformat()

        update = "SET #status = :status, refunded_at = :now, refunded_amount = :amount, updated_at = :now"
        values: dict[str, Any] = {
            ":status": new_status.value,
            ":now": now,
            ":amount": refund_amount,
            ":expected": record.status.value,
        }
        if reason:
            update += ", refund_reason = :reason"
            values[":reason"] = reason

        attrs = self.db.update_item(
            self.PAYMENTS_TABLE,
            {"payment_id": payment_id},
            update,
            values,
            {"#status": "status"},  # status is a reserved word
            condition_expression="#status = :expected",
        )
        if attrs is None:
            raise BookingError(ErrorCode.REFUND_NOT_ALLOWED, {"payment_id": payment_id})

        log_payment_operation(
            logger,
            "process_refund",
            payment_id=payment_id,
            booking_id=record.booking_id,
            transaction_id=record.transaction_id,
            amount_minor=to_minor_units(refund_amount, record.currency),
            status=new_status.value,
        )
        return self._item_to_record(attrs)

    # Reads

    def get_payment(self, payment_id: str) -> PaymentRecord | None:
        """Get a payment by ID."""
        item = self.db.get_item(self.PAYMENTS_TABLE, {"payment_id": payment_id})
        return self._item_to_record(item) if item else None

    def find_by_booking_id(self, booking_id: str) -> list[PaymentRecord]:
        """Get all payments for a booking, newest first."""
        items = self.db.query_by_gsi(
            self.PAYMENTS_TABLE,
            self.BOOKING_INDEX,
            "booking_id",
            booking_id,
            scan_index_forward=False,
        )
        return [self._item_to_record(item) for item in items]

    def find_by_transaction_id(self, transaction_id: str) -> PaymentRecord | None:
        """Get the payment that owns a provider transaction ID."""
        owner = self.db.get_unique_key_owner(transaction_guard_key(transaction_id))
        return self.get_payment(owner) if owner else None

    def find_by_provider_order_id(self, provider_order_id: str) -> PaymentRecord | None:
        """Get the newest payment registered under a provider order ID."""
        items = self.db.query_by_gsi(
            self.PAYMENTS_TABLE,
            self.PROVIDER_ORDER_INDEX,
            "provider_order_id",
            provider_order_id,
        )
        if not items:
            return None
        records = sorted(
            (self._item_to_record(item) for item in items),
            key=lambda r: r.created_at,
            reverse=True,
        )
        return records[0]

    def find_completed_for_booking(self, booking_id: str) -> PaymentRecord | None:
        """Get the booking's completed payment, if any."""
        for record in self.find_by_booking_id(booking_id):
            if record.status == PaymentStatus.COMPLETED:
                return record
        return None

    # Internals

    def _build_record(self, attempt: PaymentCreate, status: PaymentStatus) -> PaymentRecord:
        now = dt.datetime.now(dt.UTC)
        data = attempt.model_dump()
        data["status"] = status
        return PaymentRecord(
            **data,
            payment_id=self._generate_payment_id(),
            paid_at=now if status == PaymentStatus.COMPLETED else None,
            created_at=now,
            updated_at=now,
        )

    def _create_for_transaction(
        self,
        transaction_id: str,
        patch: PaymentPatch,
        defaults: PaymentCreate,
    ) -> PaymentRecord | None:
        """Insert a fresh record for a transaction nobody has seen yet.

        Returns None if another writer claimed the transaction ID first.
        """
        attempt = defaults.model_copy(
            update={
                "transaction_id": transaction_id,
                "provider_response": patch.provider_response or defaults.provider_response,
                "failure_code": patch.failure_code,
                "failure_message": patch.failure_message,
            }
        )
        record = self._build_record(attempt, patch.status)
        written = self.db.put_with_unique_keys(
            self.PAYMENTS_TABLE,
            self._record_to_item(record),
            "payment_id",
            [transaction_guard_key(transaction_id)],
        )
        if not written:
            return None
        log_payment_operation(
            logger,
            "create_payment",
            payment_id=record.payment_id,
            booking_id=record.booking_id,
            transaction_id=transaction_id,
            amount_minor=to_minor_units(record.amount, record.currency),
            status=record.status.value,
        )
        return record

    def _adopt_pending_record(
        self,
        transaction_id: str,
        defaults: PaymentCreate,
    ) -> PaymentRecord | None:
        """Attach a transaction ID to the booking's open record for the same order.

        Paymob issues the transaction ID only when the customer pays, so the
        record written at payment-key time has a provider order but no
        transaction. The attach and its guard are one transaction.
        """
        if not defaults.provider_order_id:
            return None
        candidates = [
            r
            for r in self.find_by_booking_id(defaults.booking_id)
            if r.provider_order_id == defaults.provider_order_id and not r.transaction_id
        ]
        if not candidates:
            return None

        record = candidates[0]
        now = dt.datetime.now(dt.UTC).isoformat()
        written = self.db.transact_write(
            [
                {
                    "Update": {
                        "TableName": self.db.table_name(self.PAYMENTS_TABLE),
                        "Key": self.db.serialize({"payment_id": record.payment_id}),
                        "UpdateExpression": "SET transaction_id = :txn, updated_at = :now",
                        "ConditionExpression": "attribute_exists(payment_id) AND attribute_not_exists(transaction_id)",
                        "ExpressionAttributeValues": self.db.serialize(
                            {":txn": transaction_id, ":now": now}
                        ),
                    }
                },
                {
                    "Put": {
                        "TableName": self.db.table_name(UNIQUE_KEYS_TABLE),
                        "Item": self.db.serialize(
                            {
                                "unique_key": transaction_guard_key(transaction_id),
                                "owner_id": record.payment_id,
                                "owner_table": self.PAYMENTS_TABLE,
                            }
                        ),
                        "ConditionExpression": "attribute_not_exists(unique_key)",
                    }
                },
            ]
        )
        if not written:
            return None
        logger.info(
            "Attached transaction %s to payment %s (order %s)",
            transaction_id,
            record.payment_id,
            defaults.provider_order_id,
        )
        return record.model_copy(update={"transaction_id": transaction_id})

    def _apply_patch(self, record: PaymentRecord, patch: PaymentPatch) -> PaymentRecord | None:
        """Update a record if its status is still what we read.

        Returns None when a concurrent writer changed the status first.
        """
        sets = ["#status = :status", "updated_at = :now"]
        values: dict[str, Any] = {
            ":status": patch.status.value,
            ":expected": record.status.value,
            ":now": dt.datetime.now(dt.UTC).isoformat(),
        }
        if patch.provider_response is not None:
            sets.append("provider_response = :response")
            values[":response"] = patch.provider_response
        if patch.failure_code is not None:
            sets.append("failure_code = :failure_code")
            values[":failure_code"] = patch.failure_code
        if patch.failure_message is not None:
            sets.append("failure_message = :failure_message")
            values[":failure_message"] = patch.failure_message
        if patch.status == PaymentStatus.COMPLETED:
            sets.append("paid_at = if_not_exists(paid_at, :now)")
        if patch.status in REFUND_STATUSES:
            sets.append("refunded_at = :now")

        attrs = self.db.update_item(
            self.PAYMENTS_TABLE,
            {"payment_id": record.payment_id},
            "SET " + ", ".join(sets),
            values,
            {"#status": "status"},  # status is a reserved word
            condition_expression="#status = :expected",
        )
        return self._item_to_record(attrs) if attrs else None

    def _record_to_item(self, record: PaymentRecord) -> dict[str, Any]:
        """Convert PaymentRecord model to DynamoDB item."""
        item: dict[str, Any] = record.model_dump(mode="json", exclude_none=True)
        # Keep money as Decimal rather than its JSON string form
        item["amount"] = record.amount
        if record.refunded_amount is not None:
            item["refunded_amount"] = record.refunded_amount
        if record.provider_response is not None:
            item["provider_response"] = record.provider_response
        item["metadata"] = record.metadata
        return item

    def _item_to_record(self, item: dict[str, Any]) -> PaymentRecord:
        """Convert DynamoDB item to PaymentRecord model."""
        return PaymentRecord.model_validate(item)
