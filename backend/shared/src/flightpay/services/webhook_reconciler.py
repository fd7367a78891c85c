"""Webhook reconciliation for Stripe and Paymob payment events.

Provides business logic for handling webhook events separate from
HTTP routing concerns. Each delivery is parsed, verified, classified into
a PaymentSucceeded / PaymentPending / PaymentFailed event, matched to a
booking, and applied: ledger first, then a guarded booking update.

Providers deliver at least once and in any order. Every write here is
either idempotent (ledger upsert keyed on transaction ID) or conditional
on the booking's current state, so redeliveries and races converge.
"""

import datetime as dt
import json
from dataclasses import dataclass
from typing import Any, Callable

from flightpay.config import get_settings
from flightpay.models import (
    Booking,
    BookingError,
    BookingPaymentStatus,
    BookingStatus,
    ErrorCode,
    PaymentCreate,
    PaymentFailed,
    PaymentOutcome,
    PaymentPatch,
    PaymentPending,
    PaymentProvider,
    PaymentRecord,
    PaymentStatus,
    PaymentSucceeded,
    ProcessingResult,
    ProviderError,
    ProviderEvent,
    ReconciliationResult,
    RemoteStatus,
    VerificationMode,
    WebhookVerificationError,
    is_valid_booking_id,
)
from flightpay.models.errors import provider_error_to_booking_error
from flightpay.utils.logging import get_logger, log_webhook_event
from flightpay.utils.money import from_minor_units

from .booking_repository import BookingRepository
from .gateway import PaymentGateway
from .notification_service import NotificationService
from .payment_ledger import PaymentLedger
from .paymob_service import map_transaction_status

logger = get_logger(__name__)

STRIPE_PENDING_EVENTS = frozenset({"payment_intent.processing", "payment_intent.requires_action"})

# Booking payment states that a new payment must never overwrite
SETTLED_PAYMENT_STATUSES = frozenset(
    {BookingPaymentStatus.COMPLETED, BookingPaymentStatus.REFUNDED}
)

SETTLE_CONDITION = "NOT (#payment_status IN (:completed, :refunded)) AND #status <> :cancelled"
SETTLE_VALUES = {
    ":completed": BookingPaymentStatus.COMPLETED.value,
    ":refunded": BookingPaymentStatus.REFUNDED.value,
    ":cancelled": BookingStatus.CANCELLED.value,
}


@dataclass(frozen=True)
class ReconcilerConfig:
    """Reconciler behaviour chosen at construction time."""

    verification_mode: VerificationMode = VerificationMode.STRICT


# Parsing and classification


def is_structural_stripe_event(body: dict[str, Any]) -> bool:
    """Check a body looks like a genuine Stripe event."""
    data = body.get("data")
    return (
        body.get("object") == "event"
        and str(body.get("id", "")).startswith("evt_")
        and bool(body.get("type"))
        and isinstance(data, dict)
        and isinstance(data.get("object"), dict)
    )


def is_structural_paymob_event(body: dict[str, Any]) -> bool:
    """Check a body looks like a genuine Paymob transaction callback."""
    obj = body.get("obj")
    if body.get("type") != "TRANSACTION" or not isinstance(obj, dict):
        return False
    order = obj.get("order")
    return (
        obj.get("id") is not None
        and "success" in obj
        and isinstance(order, dict)
        and order.get("id") is not None
    )


def parse_stripe_event(body: dict[str, Any], verified: bool = True) -> ProviderEvent | None:
    """Classify a Stripe PaymentIntent event.

    Returns:
        The normalized event, or None for event types we do not act on.
    """
    event_type = str(body.get("type", ""))
    intent = body["data"]["object"]
    intent_id = intent.get("id")
    metadata = intent.get("metadata") or {}
    currency = intent.get("currency")
    common: dict[str, Any] = {
        "provider": PaymentProvider.STRIPE,
        "event_id": str(body.get("id") or intent_id),
        "event_type": event_type,
        "transaction_id": intent_id,
        "provider_order_id": intent_id,
        "merchant_order_id": metadata.get("booking_id"),
        "amount_minor": intent.get("amount_received") or intent.get("amount"),
        "currency": currency.upper() if currency else None,
        "verified": verified,
        "raw": body,
    }

    if event_type == "payment_intent.succeeded":
        return PaymentSucceeded(**common)
    if event_type in STRIPE_PENDING_EVENTS:
        return PaymentPending(**common)
    if event_type == "payment_intent.payment_failed":
        error = intent.get("last_payment_error") or {}
        code = error.get("code")
        return PaymentFailed(
            **common,
            ledger_status=PaymentStatus.DECLINED if code == "card_declined" else PaymentStatus.FAILED,
            failure_code=error.get("decline_code") or code,
            failure_message=error.get("message"),
        )
    if event_type == "payment_intent.canceled":
        return PaymentFailed(
            **common,
            ledger_status=PaymentStatus.CANCELLED,
            failure_code=intent.get("cancellation_reason"),
            failure_message="Payment intent canceled",
        )
    return None


def parse_paymob_event(body: dict[str, Any], verified: bool = True) -> ProviderEvent:
    """Classify a Paymob transaction callback."""
    obj = body["obj"]
    order = obj.get("order") or {}
    data = obj.get("data") or {}
    transaction_id = str(obj["id"]) if obj.get("id") is not None else None
    order_id = str(order["id"]) if order.get("id") is not None else None
    merchant_order_id = order.get("merchant_order_id")
    common: dict[str, Any] = {
        "provider": PaymentProvider.PAYMOB,
        "event_id": transaction_id or order_id or "unknown",
        "event_type": str(body.get("type", "TRANSACTION")),
        "transaction_id": transaction_id,
        "provider_order_id": order_id,
        "merchant_order_id": str(merchant_order_id) if merchant_order_id else None,
        "amount_minor": obj.get("amount_cents"),
        "currency": obj.get("currency"),
        "verified": verified,
        "raw": body,
    }

    outcome = map_transaction_status(obj)
    if outcome is PaymentOutcome.SUCCESS:
        return PaymentSucceeded(**common)
    if outcome is PaymentOutcome.PENDING:
        return PaymentPending(**common)
    response_code = data.get("txn_response_code")
    return PaymentFailed(
        **common,
        failure_code=str(response_code) if response_code is not None else None,
        failure_message=data.get("message"),
    )


def event_from_remote_status(
    remote: RemoteStatus,
    *,
    booking_id: str,
    provider_order_id: str | None,
) -> ProviderEvent:
    """Build the event a webhook would have delivered for a remote status."""
    common: dict[str, Any] = {
        "provider": remote.provider,
        "event_id": f"sync:{remote.reference}",
        "event_type": f"sync.{remote.native_status}",
        "transaction_id": remote.transaction_id,
        "provider_order_id": provider_order_id,
        "merchant_order_id": booking_id,
        "amount_minor": remote.amount_minor,
        "currency": remote.currency,
        "raw": remote.raw,
    }
    if remote.outcome is PaymentOutcome.SUCCESS:
        return PaymentSucceeded(**common)
    if remote.outcome is PaymentOutcome.PENDING:
        return PaymentPending(**common)
    return PaymentFailed(**common, failure_message=f"Provider status {remote.native_status}")


def ledger_status_for(event: ProviderEvent) -> PaymentStatus:
    """Ledger status an event moves its payment record to."""
    if isinstance(event, PaymentSucceeded):
        return PaymentStatus.COMPLETED
    if isinstance(event, PaymentPending):
        return PaymentStatus.PROCESSING
    return event.ledger_status


class WebhookReconciler:
    """Applies provider payment events to bookings and the ledger."""

    WEBHOOK_EVENTS_TABLE = "webhook-events"

    def __init__(
        self,
        bookings: BookingRepository,
        ledger: PaymentLedger,
        notifications: NotificationService,
        stripe: PaymentGateway,
        paymob: PaymentGateway,
        config: ReconcilerConfig | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            bookings: Booking persistence
            ledger: Payment ledger
            notifications: Email collaborator
            stripe: Stripe gateway (signature verification)
            paymob: Paymob gateway (HMAC verification)
            config: Verification mode and other behaviour
        """
        self.bookings = bookings
        self.ledger = ledger
        self.notifications = notifications
        self.stripe = stripe
        self.paymob = paymob
        self.config = config or ReconcilerConfig()
        self._db = bookings.db

    # Entry points

    def handle_stripe_webhook(self, payload: bytes, signature: str | None) -> ReconciliationResult:
        """Process a Stripe webhook delivery.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header value

        Raises:
            BookingError: MALFORMED_WEBHOOK, INVALID_WEBHOOK_SIGNATURE or
                WEBHOOK_BOOKING_UNRESOLVED.
        """
        body = self._parse(payload)
        data = body.get("data")
        if not body.get("type") or not isinstance(data, dict) or not isinstance(data.get("object"), dict):
            raise BookingError(ErrorCode.MALFORMED_WEBHOOK, {"reason": "missing type or data.object"})

        verified = self._verify(self.stripe, payload, signature, body, is_structural_stripe_event)
        event = parse_stripe_event(body, verified)
        if event is None:
            result = ReconciliationResult(
                event_id=body.get("id"),
                event_type=body.get("type"),
                processing_result=ProcessingResult.SKIPPED,
                message=f"Event type {body.get('type')} is not handled",
            )
            log_webhook_event(
                logger,
                str(body.get("type")),
                str(body.get("id")),
                provider=PaymentProvider.STRIPE.value,
                result=result.processing_result.value,
            )
            self.log_event(result, provider=PaymentProvider.STRIPE)
            return result
        return self._process(event)

    def handle_paymob_webhook(self, payload: bytes, hmac_signature: str | None) -> ReconciliationResult:
        """Process a Paymob transaction callback.

        Args:
            payload: Raw request body
            hmac_signature: ``hmac`` query parameter or signature header

        Raises:
            BookingError: MALFORMED_WEBHOOK, INVALID_WEBHOOK_SIGNATURE or
                WEBHOOK_BOOKING_UNRESOLVED.
        """
        body = self._parse(payload)
        if not isinstance(body.get("obj"), dict):
            raise BookingError(ErrorCode.MALFORMED_WEBHOOK, {"reason": "missing obj"})

        verified = self._verify(self.paymob, payload, hmac_signature, body, is_structural_paymob_event)
        return self._process(parse_paymob_event(body, verified))

    def apply_event(self, event: ProviderEvent) -> ReconciliationResult:
        """Resolve the event's booking and apply the transition.

        Shared by webhooks and the manual status sync, so both take the
        same path to a confirmed booking.
        """
        booking = self._resolve_booking(event)
        result = self._apply(event, booking)
        log_webhook_event(
            logger,
            event.event_type,
            event.event_id,
            provider=event.provider.value,
            booking_id=booking.booking_id,
            payment_id=result.payment_id,
            transaction_id=event.transaction_id,
            result=result.processing_result.value,
            outcome=event.outcome.value,
            verified=event.verified,
        )
        return result

    # Steps

    def _parse(self, payload: bytes) -> dict[str, Any]:
        try:
            body = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as e:
            raise BookingError(ErrorCode.MALFORMED_WEBHOOK, {"reason": "invalid JSON"}) from e
        if not isinstance(body, dict):
            raise BookingError(ErrorCode.MALFORMED_WEBHOOK, {"reason": "body is not an object"})
        return body

    def _verify(
        self,
        gateway: PaymentGateway,
        payload: bytes,
        signature: str | None,
        body: dict[str, Any],
        structural_match: Callable[[dict[str, Any]], bool],
    ) -> bool:
        """Verify a delivery's signature.

        Returns:
            True if the signature verified, False if accepted by structural
            match under the fallback mode.

        Raises:
            BookingError: INVALID_WEBHOOK_SIGNATURE, or PROVIDER_UNAVAILABLE if
                the signing secret cannot be read.
        """
        try:
            gateway.verify_webhook(payload, signature)
            return True
        except WebhookVerificationError as e:
            if (
                self.config.verification_mode is VerificationMode.FALLBACK_ON_STRUCTURAL_MATCH
                and structural_match(body)
            ):
                logger.warning(
                    "Accepting unverified %s webhook %s by structural match: %s",
                    gateway.provider.value,
                    body.get("id") or (body.get("obj") or {}).get("id"),
                    e,
                )
                return False
            logger.warning("Rejected %s webhook: %s", gateway.provider.value, e)
            raise BookingError(
                ErrorCode.INVALID_WEBHOOK_SIGNATURE, {"provider": gateway.provider.value}
            ) from e
        except ProviderError as e:
            raise provider_error_to_booking_error(e) from e

    def _process(self, event: ProviderEvent) -> ReconciliationResult:
        try:
            result = self.apply_event(event)
        except Exception as e:
            log_webhook_event(
                logger,
                event.event_type,
                event.event_id,
                provider=event.provider.value,
                transaction_id=event.transaction_id,
                error=str(e),
            )
            self.log_event(
                ReconciliationResult(
                    event_id=event.event_id,
                    event_type=event.event_type,
                    processing_result=ProcessingResult.IGNORED,
                    outcome=event.outcome,
                    message=str(e),
                ),
                provider=event.provider,
                error=True,
            )
            raise
        self.log_event(result, provider=event.provider)
        return result

    def _resolve_booking(self, event: ProviderEvent) -> Booking:
        """Find the booking an event refers to.

        Order: merchant order ID, then the ledger by provider order ID, then
        the ledger by transaction ID.

        Raises:
            BookingError: WEBHOOK_BOOKING_UNRESOLVED
        """
        if event.merchant_order_id and is_valid_booking_id(event.merchant_order_id):
            booking = self.bookings.get(event.merchant_order_id)
            if booking:
                return booking

        record: PaymentRecord | None = None
        if event.provider_order_id:
            record = self.ledger.find_by_provider_order_id(event.provider_order_id)
        if record is None and event.transaction_id:
            record = self.ledger.find_by_transaction_id(event.transaction_id)
        if record is not None:
            booking = self.bookings.get(record.booking_id)
            if booking:
                logger.warning(
                    "Resolved %s event %s to booking %s through the ledger",
                    event.provider.value,
                    event.event_id,
                    booking.booking_id,
                )
                return booking

        raise BookingError(
            ErrorCode.WEBHOOK_BOOKING_UNRESOLVED,
            {
                "event_id": event.event_id,
                "merchant_order_id": event.merchant_order_id or "",
                "provider_order_id": event.provider_order_id or "",
            },
        )

    def _apply(self, event: ProviderEvent, booking: Booking) -> ReconciliationResult:
        def result(
            processing_result: ProcessingResult,
            message: str | None = None,
            payment: PaymentRecord | None = None,
        ) -> ReconciliationResult:
            return ReconciliationResult(
                event_id=event.event_id,
                event_type=event.event_type,
                processing_result=processing_result,
                booking_id=booking.booking_id,
                payment_id=payment.payment_id if payment else None,
                outcome=event.outcome,
                message=message,
            )

        if booking.payment_status in SETTLED_PAYMENT_STATUSES:
            if event.transaction_id is None or event.transaction_id == booking.payment_intent_id:
                return result(ProcessingResult.DUPLICATE, "Booking already paid")
            if isinstance(event, PaymentSucceeded) and self._paid_by_same_order(event, booking):
                return result(
                    ProcessingResult.DUPLICATE,
                    "Booking already paid",
                    self._attach_transaction(event, booking),
                )
            logger.error(
                "Booking %s already paid with %s; ignoring %s event for transaction %s",
                booking.booking_id,
                booking.payment_intent_id,
                event.outcome.value,
                event.transaction_id,
            )
            return result(ProcessingResult.IGNORED, "Booking already paid by another transaction")

        if booking.status == BookingStatus.CANCELLED:
            if isinstance(event, PaymentSucceeded):
                payment = self._record_in_ledger(event, booking)
                logger.error(
                    "Payment %s captured for cancelled booking %s; refund required",
                    event.transaction_id,
                    booking.booking_id,
                )
                return result(ProcessingResult.IGNORED, "Booking is cancelled; refund required", payment)
            return result(ProcessingResult.IGNORED, "Booking is cancelled")

        payment = self._record_in_ledger(event, booking)

        if isinstance(event, PaymentSucceeded):
            return self._confirm(event, booking, payment, result)
        if isinstance(event, PaymentPending):
            updated = self.bookings.conditional_update(
                booking.booking_id,
                {"payment_status": BookingPaymentStatus.PROCESSING},
                "#payment_status IN (:pending, :processing, :failed) AND #status = :pending",
                {
                    ":pending": BookingPaymentStatus.PENDING.value,
                    ":processing": BookingPaymentStatus.PROCESSING.value,
                    ":failed": BookingPaymentStatus.FAILED.value,
                },
            )
            if updated is None:
                return result(ProcessingResult.IGNORED, "Booking no longer awaiting payment", payment)
            return result(ProcessingResult.SUCCESS, "Payment processing", payment)

        updated = self.bookings.conditional_update(
            booking.booking_id,
            {"payment_status": BookingPaymentStatus.FAILED},
            SETTLE_CONDITION,
            SETTLE_VALUES,
        )
        if updated is None:
            return result(ProcessingResult.IGNORED, "Booking no longer awaiting payment", payment)
        return result(ProcessingResult.SUCCESS, event.failure_message or "Payment failed", payment)

    def _confirm(
        self,
        event: PaymentSucceeded,
        booking: Booking,
        payment: PaymentRecord | None,
        result: Callable[..., ReconciliationResult],
    ) -> ReconciliationResult:
        confirmed = self.bookings.conditional_update(
            booking.booking_id,
            {
                "payment_status": BookingPaymentStatus.COMPLETED,
                "status": BookingStatus.CONFIRMED,
                "payment_completed_at": dt.datetime.now(dt.UTC),
                "payment_intent_id": event.transaction_id or booking.payment_intent_id,
                "payment_provider": event.provider,
            },
            SETTLE_CONDITION,
            SETTLE_VALUES,
        )
        if confirmed is None:
            current = self.bookings.get(booking.booking_id)
            if current is not None and current.status == BookingStatus.CANCELLED:
                logger.error(
                    "Booking %s was cancelled while payment %s completed; refund required",
                    booking.booking_id,
                    event.transaction_id,
                )
                return result(ProcessingResult.IGNORED, "Booking is cancelled; refund required", payment)
            return result(ProcessingResult.DUPLICATE, "Booking already confirmed", payment)

        logger.info("Booking %s confirmed by %s payment", booking.booking_id, event.provider.value)
        self.notifications.send_booking_confirmation(confirmed)
        return result(ProcessingResult.SUCCESS, "Booking confirmed", payment)

    def _paid_by_same_order(self, event: ProviderEvent, booking: Booking) -> bool:
        """Whether the booking was settled from an order-level status of this event's order.

        A status sync can confirm a Paymob booking before the transaction
        callback arrives. The completed record then has the order but no
        transaction ID, and the callback is the same payment.
        """
        if not event.provider_order_id:
            return False
        record = self.ledger.find_completed_for_booking(booking.booking_id)
        return (
            record is not None
            and record.provider_order_id == event.provider_order_id
            and not record.transaction_id
        )

    def _attach_transaction(self, event: ProviderEvent, booking: Booking) -> PaymentRecord | None:
        payment = self._record_in_ledger(event, booking)
        self.bookings.conditional_update(
            booking.booking_id,
            {"payment_intent_id": event.transaction_id},
            "attribute_not_exists(payment_intent_id) OR payment_intent_id = :order",
            {":order": event.provider_order_id},
        )
        logger.info(
            "Attached transaction %s to paid booking %s (order %s)",
            event.transaction_id,
            booking.booking_id,
            event.provider_order_id,
        )
        return payment

    def _record_in_ledger(self, event: ProviderEvent, booking: Booking) -> PaymentRecord | None:
        """Write the event's status to the ledger.

        Events without a transaction ID (an order-level status) update the
        newest record for the provider order, if there is one.
        """
        patch = PaymentPatch(
            status=ledger_status_for(event),
            provider_response=event.raw or None,
            failure_code=event.failure_code if isinstance(event, PaymentFailed) else None,
            failure_message=event.failure_message if isinstance(event, PaymentFailed) else None,
        )

        if event.transaction_id:
            currency = event.currency or booking.currency
            amount = (
                from_minor_units(event.amount_minor, currency)
                if event.amount_minor is not None
                else booking.total_price
            )
            defaults = PaymentCreate(
                booking_id=booking.booking_id,
                user_id=booking.user_id,
                amount=amount,
                currency=currency,
                provider=event.provider,
                transaction_id=event.transaction_id,
                provider_order_id=event.provider_order_id,
                metadata={"provider_order_id": event.provider_order_id} if event.provider_order_id else {},
                is_test=get_settings().environment != "prod",
            )
            return self.ledger.upsert_by_transaction_id(event.transaction_id, patch, defaults=defaults)

        if event.provider_order_id:
            record = self.ledger.find_by_provider_order_id(event.provider_order_id)
            if record is not None:
                return self.ledger.update_payment(record.payment_id, patch)
        logger.warning("No ledger record to update for %s event %s", event.provider.value, event.event_id)
        return None

    # Audit

    def log_event(
        self,
        result: ReconciliationResult,
        *,
        provider: PaymentProvider,
        error: bool = False,
    ) -> None:
        """Append a delivery to the webhook audit table.

        Best effort: audit failures are logged and never fail the delivery.
        """
        item: dict[str, Any] = {
            "event_id": f"{provider.value}:{result.event_id}",
            "provider": provider.value,
            "event_type": result.event_type,
            "processing_result": "error" if error else result.processing_result.value,
            "booking_id": result.booking_id,
            "payment_id": result.payment_id,
            "outcome": result.outcome.value if result.outcome else None,
            "message": result.message,
            "processed_at": dt.datetime.now(dt.UTC).isoformat(),
        }
        try:
            self._db.put_item(self.WEBHOOK_EVENTS_TABLE, item)
        except Exception as e:
            logger.warning("Failed to write webhook audit for %s: %s", result.event_id, e)
