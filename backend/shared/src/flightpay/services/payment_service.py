"""Payment side of the booking lifecycle.

This service handles payment processing for bookings: issuing provider
payment handles, status checks with remote sync, and refunds. Provider
failures are translated into BookingError and never change booking state.
"""

from decimal import Decimal
from typing import Any

from flightpay.config import Settings, get_settings
from flightpay.models import (
    Booking,
    BookingError,
    BookingPaymentStatus,
    BookingStatus,
    ErrorCode,
    PaymentCreate,
    PaymentHandle,
    PaymentOutcome,
    PaymentPatch,
    PaymentProvider,
    PaymentRecord,
    PaymentStatus,
    PaymentStatusView,
    ProviderError,
    RemoteStatus,
)
from flightpay.models.errors import provider_error_to_booking_error
from flightpay.utils.logging import get_logger, log_payment_operation
from flightpay.utils.money import amounts_match, to_minor_units

from .booking_service import BookingService
from .gateway import PaymentGateway
from .payment_ledger import FINAL_STATUSES, PaymentLedger
from .paymob_service import PaymobService
from .webhook_reconciler import WebhookReconciler, event_from_remote_status

logger = get_logger(__name__)

UNPAYABLE_PAYMENT_STATUSES = frozenset(
    {BookingPaymentStatus.COMPLETED, BookingPaymentStatus.REFUNDED}
)
SYNCABLE_PAYMENT_STATUSES = frozenset(
    {BookingPaymentStatus.PENDING, BookingPaymentStatus.PROCESSING}
)


class PaymentService:
    """Service for requesting, checking and refunding booking payments."""

    def __init__(
        self,
        bookings: BookingService,
        ledger: PaymentLedger,
        reconciler: WebhookReconciler,
        stripe: PaymentGateway,
        paymob: PaymobService,
        settings: Settings | None = None,
    ) -> None:
        """Initialize payment service.

        Args:
            bookings: Booking lifecycle service (reads and ownership checks)
            ledger: Payment ledger
            reconciler: Applies remote statuses the same way webhooks do
            stripe: Stripe gateway
            paymob: Paymob gateway
            settings: Runtime settings
        """
        self.bookings = bookings
        self.ledger = ledger
        self.reconciler = reconciler
        self.stripe = stripe
        self.paymob = paymob
        self.settings = settings or get_settings()

    def _gateway(self, provider: PaymentProvider) -> PaymentGateway:
        if provider == PaymentProvider.STRIPE:
            return self.stripe
        if provider == PaymentProvider.PAYMOB:
            return self.paymob
        raise BookingError(ErrorCode.UNSUPPORTED_PROVIDER, {"provider": provider.value})

    def request_payment_handle(
        self,
        user_id: str,
        booking_id: str,
        amount: Decimal,
        currency: str,
        provider: PaymentProvider,
        billing_overrides: dict[str, Any] | None = None,
    ) -> PaymentHandle:
        """Register a provider order for a booking and return its client handle.

        The requested amount must equal the booking total to the minor unit;
        this is checked before any provider call.

        Args:
            user_id: Caller; must own the booking
            booking_id: Booking to pay
            amount: Amount the client intends to pay, in major units
            currency: ISO currency code
            provider: Payment provider to use
            billing_overrides: Billing fields such as email and phone_number

        Returns:
            PaymentHandle with the client secret or payment key

        Raises:
            BookingError: UNAUTHORIZED, BOOKING_NOT_PAYABLE, AMOUNT_MISMATCH,
                UNSUPPORTED_PROVIDER or PROVIDER_*.
        """
        booking = self.bookings.get_booking_for_user(booking_id, user_id)
        if booking.status != BookingStatus.PENDING or booking.payment_status in UNPAYABLE_PAYMENT_STATUSES:
            raise BookingError(
                ErrorCode.BOOKING_NOT_PAYABLE,
                {"status": booking.status.value, "payment_status": booking.payment_status.value},
            )
        if currency.upper() != booking.currency or not amounts_match(
            amount, booking.total_price, booking.currency
        ):
            log_payment_operation(
                logger,
                "request_payment_handle",
                booking_id=booking_id,
                error="amount mismatch",
                requested=f"{amount} {currency.upper()}",
                expected=f"{booking.total_price} {booking.currency}",
            )
            raise BookingError(
                ErrorCode.AMOUNT_MISMATCH,
                {
                    "expected": f"{booking.total_price} {booking.currency}",
                    "received": f"{amount} {currency.upper()}",
                },
            )

        gateway = self._gateway(provider)
        amount_minor = to_minor_units(booking.total_price, booking.currency)
        try:
            token = gateway.authenticate()
            order_id = gateway.register_order(
                token,
                booking.booking_id,
                amount_minor,
                booking.currency,
                {"booking_ref": booking.booking_ref},
            )
            handle = gateway.request_payment_handle(
                token,
                amount_minor,
                order_id,
                self._billing_data(booking, billing_overrides),
                booking.currency,
            )
        except ProviderError as e:
            log_payment_operation(
                logger,
                "request_payment_handle",
                booking_id=booking_id,
                amount_minor=amount_minor,
                error=str(e),
                provider=provider.value,
            )
            raise provider_error_to_booking_error(e) from e

        record = self.ledger.create_payment(
            PaymentCreate(
                booking_id=booking.booking_id,
                user_id=user_id,
                amount=booking.total_price,
                currency=booking.currency,
                provider=provider,
                status=PaymentStatus.PENDING,
                transaction_id=order_id if provider == PaymentProvider.STRIPE else None,
                provider_order_id=order_id,
                payment_key=handle.handle,
                metadata={
                    "provider_order_id": order_id,
                    "integration_id": handle.integration_id,
                    "expires_at": handle.expires_at.isoformat() if handle.expires_at else None,
                },
                is_test=self.settings.environment != "prod",
            )
        )
        self.bookings.repository.conditional_update(
            booking.booking_id,
            {"payment_provider": provider, "payment_intent_id": order_id},
            "#status = :pending",
            {":pending": BookingStatus.PENDING.value},
        )

        log_payment_operation(
            logger,
            "request_payment_handle",
            payment_id=record.payment_id,
            booking_id=booking_id,
            amount_minor=amount_minor,
            status=record.status.value,
            provider=provider.value,
            provider_order_id=order_id,
        )
        return handle.model_copy(update={"payment_id": record.payment_id})

    def _billing_data(self, booking: Booking, overrides: dict[str, Any] | None) -> dict[str, Any]:
        lead = booking.travellers[0]
        billing: dict[str, Any] = {
            "first_name": lead.first_name,
            "last_name": lead.last_name,
            "email": booking.contact_details.email,
            "phone_number": booking.contact_details.phone,
        }
        billing.update({k: v for k, v in (overrides or {}).items() if v})
        return billing

    def get_payment_status(self, user_id: str, booking_id: str) -> PaymentStatusView:
        """Get the booking's payment status, re-checking Paymob if still open.

        A failed remote re-check is logged and the local status returned.
        """
        booking = self.bookings.get_booking_for_user(booking_id, user_id)
        if (
            booking.payment_provider == PaymentProvider.PAYMOB
            and booking.status == BookingStatus.PENDING
            and booking.payment_status in SYNCABLE_PAYMENT_STATUSES
        ):
            try:
                return self.sync_status(booking_id)
            except BookingError as e:
                logger.warning("Lazy status sync failed for booking %s: %s", booking_id, e.code.value)

        records = self.ledger.find_by_booking_id(booking_id)
        return self._status_view(booking, records[0] if records else None)

    def sync_status(self, booking_id: str) -> PaymentStatusView:
        """Ask the provider for the latest payment status and converge to it.

        A remote success on an unpaid booking goes through the same
        transition as a success webhook. A confirmed booking whose ledger
        record lags behind has the record repaired.

        Raises:
            BookingError: BOOKING_NOT_FOUND, PAYMENT_NOT_FOUND or PROVIDER_*.
        """
        booking = self.bookings.get_booking_by_id(booking_id)
        records = self.ledger.find_by_booking_id(booking_id)
        if not records:
            raise BookingError(ErrorCode.PAYMENT_NOT_FOUND, {"booking_id": booking_id})

        record = records[0]
        if booking.payment_status == BookingPaymentStatus.COMPLETED and booking.payment_intent_id:
            record = self.ledger.find_by_transaction_id(booking.payment_intent_id) or record

        remote = self._fetch_remote_status(record)
        if remote is None:
            return self._status_view(booking, record)

        if remote.outcome is PaymentOutcome.SUCCESS:
            if booking.payment_status == BookingPaymentStatus.COMPLETED:
                record = self._repair_ledger(record, remote)
            else:
                event = event_from_remote_status(
                    remote,
                    booking_id=booking_id,
                    provider_order_id=record.provider_order_id,
                )
                result = self.reconciler.apply_event(event)
                logger.info(
                    "Sync of booking %s applied remote success: %s",
                    booking_id,
                    result.processing_result.value,
                )
                booking = self.bookings.get_booking_by_id(booking_id)
                record = self.ledger.get_payment(record.payment_id) or record

        return self._status_view(booking, record, remote.native_status)

    def _fetch_remote_status(self, record: PaymentRecord) -> RemoteStatus | None:
        gateway = self._gateway(record.provider)
        try:
            if record.transaction_id:
                return gateway.get_remote_status(record.transaction_id)
            if record.provider == PaymentProvider.PAYMOB and record.provider_order_id:
                return self.paymob.get_order_status(record.provider_order_id)
        except ProviderError as e:
            log_payment_operation(
                logger,
                "sync_status",
                payment_id=record.payment_id,
                booking_id=record.booking_id,
                transaction_id=record.transaction_id,
                error=str(e),
            )
            raise provider_error_to_booking_error(e) from e
        return None

    def _repair_ledger(self, record: PaymentRecord, remote: RemoteStatus) -> PaymentRecord:
        if record.status in FINAL_STATUSES:
            return record
        logger.warning(
            "Repairing ledger: payment %s is %s but booking %s is paid",
            record.payment_id,
            record.status.value,
            record.booking_id,
        )
        return self.ledger.update_payment(
            record.payment_id,
            PaymentPatch(status=PaymentStatus.COMPLETED, provider_response=remote.raw or None),
        )

    def refund_payment(
        self,
        user_id: str,
        booking_id: str,
        amount: Decimal | None = None,
        reason: str | None = None,
    ) -> PaymentRecord:
        """Refund the booking's completed payment, fully or in part.

        Args:
            user_id: Caller; must own the booking
            booking_id: Booking whose payment is refunded
            amount: Amount in major units. None refunds in full.
            reason: Optional refund reason

        Returns:
            The refunded ledger record

        Raises:
            BookingError: PAYMENT_NOT_FOUND, REFUND_NOT_ALLOWED, REFUND_IN_PROGRESS,
                REFUND_TRANSACTION_UNKNOWN, REFUND_EXCEEDS_PAYMENT or PROVIDER_*.
        """
        self.bookings.get_booking_for_user(booking_id, user_id)
        record = self.ledger.find_completed_for_booking(booking_id)
        if record is None:
            records = self.ledger.find_by_booking_id(booking_id)
            if any(r.status == PaymentStatus.REFUND_PENDING for r in records):
                raise BookingError(ErrorCode.REFUND_IN_PROGRESS, {"booking_id": booking_id})
            if records:
                raise BookingError(ErrorCode.REFUND_NOT_ALLOWED, {"booking_id": booking_id})
            raise BookingError(ErrorCode.PAYMENT_NOT_FOUND, {"booking_id": booking_id})

        refund_amount = self.ledger.validate_refund(record, amount)
        if not record.transaction_id:
            raise BookingError(
                ErrorCode.REFUND_TRANSACTION_UNKNOWN,
                {"payment_id": record.payment_id, "provider_order_id": record.provider_order_id or ""},
            )

        # Claim before calling the provider so concurrent requests refund once
        self.ledger.claim_refund(record, refund_amount)
        amount_minor = to_minor_units(refund_amount, record.currency)
        try:
            refund = self._gateway(record.provider).create_refund(
                record.transaction_id,
                amount_minor,
                reason,
                idempotency_key=f"refund-{record.payment_id}-{amount_minor}",
            )
        except ProviderError as e:
            self.ledger.release_refund_claim(record.payment_id)
            log_payment_operation(
                logger,
                "refund_payment",
                payment_id=record.payment_id,
                booking_id=booking_id,
                transaction_id=record.transaction_id,
                error=str(e),
            )
            raise provider_error_to_booking_error(e) from e

        updated = self.ledger.process_refund(record.payment_id, refund_amount, reason)
        if updated.status == PaymentStatus.REFUNDED:
            self.bookings.repository.conditional_update(
                booking_id,
                {"payment_status": BookingPaymentStatus.REFUNDED},
                "#payment_status = :completed",
                {":completed": BookingPaymentStatus.COMPLETED.value},
            )
        log_payment_operation(
            logger,
            "refund_payment",
            payment_id=record.payment_id,
            booking_id=booking_id,
            transaction_id=record.transaction_id,
            amount_minor=amount_minor,
            status=updated.status.value,
            refund_id=refund.get("refund_id"),
        )
        return updated

    def get_payment_details(self, booking_id: str, user_id: str | None = None) -> list[PaymentRecord]:
        """List every ledger record for a booking, newest first."""
        if user_id is not None:
            self.bookings.get_booking_for_user(booking_id, user_id)
        return self.ledger.find_by_booking_id(booking_id)

    def _status_view(
        self,
        booking: Booking,
        record: PaymentRecord | None,
        provider_status: str | None = None,
    ) -> PaymentStatusView:
        return PaymentStatusView(
            booking_id=booking.booking_id,
            payment_status=booking.payment_status,
            booking_status=booking.status,
            provider_status=provider_status,
            transaction_id=record.transaction_id if record else None,
            payment_id=record.payment_id if record else None,
        )
