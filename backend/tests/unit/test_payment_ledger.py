"""Unit tests for PaymentLedger.

Uses moto to mock DynamoDB so conditional writes and transactions behave
as they do against the real service.
"""

from decimal import Decimal

import pytest

from flightpay.models import (
    BookingError,
    ErrorCode,
    PaymentCreate,
    PaymentPatch,
    PaymentProvider,
    PaymentStatus,
)
from flightpay.services.payment_ledger import (
    PaymentLedger,
    is_allowed_transition,
    transaction_guard_key,
)

BOOKING_ID = "BKG-0123456789AB"


def _attempt(**overrides) -> PaymentCreate:
    data = {
        "booking_id": BOOKING_ID,
        "user_id": "user-sub-123",
        "amount": Decimal("1500.00"),
        "currency": "USD",
        "provider": PaymentProvider.STRIPE,
    }
    data.update(overrides)
    return PaymentCreate(**data)


class TestIsAllowedTransition:
    """Status transitions permitted by upserts."""

    @pytest.mark.parametrize(
        "current,new",
        [
            (PaymentStatus.PENDING, PaymentStatus.PROCESSING),
            (PaymentStatus.PENDING, PaymentStatus.COMPLETED),
            (PaymentStatus.PROCESSING, PaymentStatus.COMPLETED),
            (PaymentStatus.FAILED, PaymentStatus.COMPLETED),
            (PaymentStatus.DECLINED, PaymentStatus.PROCESSING),
            (PaymentStatus.PENDING, PaymentStatus.PENDING),
        ],
    )
    def test_allowed(self, current, new):
        assert is_allowed_transition(current, new) is True

    @pytest.mark.parametrize(
        "current,new",
        [
            (PaymentStatus.COMPLETED, PaymentStatus.PROCESSING),
            (PaymentStatus.COMPLETED, PaymentStatus.FAILED),
            (PaymentStatus.REFUNDED, PaymentStatus.COMPLETED),
            (PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.COMPLETED),
            (PaymentStatus.REFUND_PENDING, PaymentStatus.COMPLETED),
            (PaymentStatus.PROCESSING, PaymentStatus.PENDING),
        ],
    )
    def test_rejected(self, current, new):
        assert is_allowed_transition(current, new) is False


class TestCreatePayment:
    """Tests for create_payment()."""

    def test_creates_pending_record_without_transaction(self, ledger: PaymentLedger):
        record = ledger.create_payment(_attempt(provider_order_id="9001"))

        assert record.payment_id.startswith("PAY-")
        assert record.status == PaymentStatus.PENDING
        stored = ledger.get_payment(record.payment_id)
        assert stored is not None
        assert stored.amount == Decimal("1500.00")
        assert stored.provider_order_id == "9001"

    def test_registers_transaction_guard(self, ledger: PaymentLedger, db):
        record = ledger.create_payment(_attempt(transaction_id="pi_123"))

        assert db.get_unique_key_owner(transaction_guard_key("pi_123")) == record.payment_id
        assert ledger.find_by_transaction_id("pi_123").payment_id == record.payment_id

    def test_second_attempt_for_same_transaction_merges(self, ledger: PaymentLedger):
        first = ledger.create_payment(_attempt(transaction_id="pi_123"))
        second = ledger.create_payment(_attempt(transaction_id="pi_123"))

        assert second.payment_id == first.payment_id
        assert len(ledger.find_by_booking_id(BOOKING_ID)) == 1


class TestUpsertByTransactionId:
    """Tests for upsert_by_transaction_id()."""

    def test_creates_record_when_unknown(self, ledger: PaymentLedger):
        record = ledger.upsert_by_transaction_id(
            "pi_new",
            PaymentPatch(status=PaymentStatus.COMPLETED),
            defaults=_attempt(transaction_id="pi_new"),
        )

        assert record.status == PaymentStatus.COMPLETED
        assert record.transaction_id == "pi_new"
        assert record.paid_at is not None

    def test_repeated_success_is_idempotent(self, ledger: PaymentLedger):
        patch = PaymentPatch(status=PaymentStatus.COMPLETED)
        first = ledger.upsert_by_transaction_id("pi_dup", patch, defaults=_attempt())
        second = ledger.upsert_by_transaction_id("pi_dup", patch, defaults=_attempt())

        assert second.payment_id == first.payment_id
        assert second.paid_at == first.paid_at
        records = ledger.find_by_booking_id(BOOKING_ID)
        assert [r.status for r in records] == [PaymentStatus.COMPLETED]

    def test_pending_after_success_does_not_downgrade(self, ledger: PaymentLedger):
        ledger.upsert_by_transaction_id(
            "pi_order", PaymentPatch(status=PaymentStatus.COMPLETED), defaults=_attempt()
        )
        record = ledger.upsert_by_transaction_id(
            "pi_order", PaymentPatch(status=PaymentStatus.PROCESSING), defaults=_attempt()
        )

        assert record.status == PaymentStatus.COMPLETED

    def test_failure_then_success_completes(self, ledger: PaymentLedger):
        ledger.upsert_by_transaction_id(
            "pi_retry",
            PaymentPatch(status=PaymentStatus.DECLINED, failure_code="card_declined"),
            defaults=_attempt(),
        )
        record = ledger.upsert_by_transaction_id(
            "pi_retry", PaymentPatch(status=PaymentStatus.COMPLETED), defaults=_attempt()
        )

        assert record.status == PaymentStatus.COMPLETED
        assert record.failure_code == "card_declined"

    def test_adopts_pending_record_for_same_order(self, ledger: PaymentLedger):
        pending = ledger.create_payment(
            _attempt(provider=PaymentProvider.PAYMOB, currency="EGP", provider_order_id="9001")
        )

        record = ledger.upsert_by_transaction_id(
            "777001",
            PaymentPatch(status=PaymentStatus.COMPLETED),
            defaults=_attempt(
                provider=PaymentProvider.PAYMOB,
                currency="EGP",
                transaction_id="777001",
                provider_order_id="9001",
            ),
        )

        assert record.payment_id == pending.payment_id
        assert record.transaction_id == "777001"
        assert record.status == PaymentStatus.COMPLETED
        assert ledger.find_by_transaction_id("777001").payment_id == pending.payment_id
        assert len(ledger.find_by_booking_id(BOOKING_ID)) == 1


class TestUpdatePayment:
    """Tests for update_payment()."""

    def test_missing_payment_raises(self, ledger: PaymentLedger):
        with pytest.raises(BookingError) as exc_info:
            ledger.update_payment("PAY-MISSING", PaymentPatch(status=PaymentStatus.FAILED))

        assert exc_info.value.code == ErrorCode.PAYMENT_NOT_FOUND

    def test_updates_status(self, ledger: PaymentLedger):
        record = ledger.create_payment(_attempt(provider_order_id="9001"))

        updated = ledger.update_payment(
            record.payment_id,
            PaymentPatch(status=PaymentStatus.FAILED, failure_message="Do not honour"),
        )

        assert updated.status == PaymentStatus.FAILED
        assert updated.failure_message == "Do not honour"


class TestRefunds:
    """Tests for validate_refund(), claim_refund() and process_refund()."""

    @pytest.fixture
    def completed(self, ledger: PaymentLedger):
        return ledger.upsert_by_transaction_id(
            "pi_paid", PaymentPatch(status=PaymentStatus.COMPLETED), defaults=_attempt()
        )

    def test_refund_of_pending_payment_not_allowed(self, ledger: PaymentLedger):
        record = ledger.create_payment(_attempt())

        with pytest.raises(BookingError) as exc_info:
            ledger.validate_refund(record, None)

        assert exc_info.value.code == ErrorCode.REFUND_NOT_ALLOWED

    def test_refund_above_original_rejected(self, ledger: PaymentLedger, completed):
        with pytest.raises(BookingError) as exc_info:
            ledger.validate_refund(completed, Decimal("1500.01"))

        assert exc_info.value.code == ErrorCode.REFUND_EXCEEDS_PAYMENT

    def test_full_refund(self, ledger: PaymentLedger, completed):
        record = ledger.process_refund(completed.payment_id, reason="Customer request")

        assert record.status == PaymentStatus.REFUNDED
        assert record.refunded_amount == Decimal("1500.00")
        assert record.refund_reason == "Customer request"
        assert record.refunded_at is not None

    def test_partial_refund(self, ledger: PaymentLedger, completed):
        record = ledger.process_refund(completed.payment_id, Decimal("500.00"))

        assert record.status == PaymentStatus.PARTIALLY_REFUNDED
        assert record.refunded_amount == Decimal("500.00")

    def test_second_refund_not_allowed(self, ledger: PaymentLedger, completed):
        ledger.process_refund(completed.payment_id)

        with pytest.raises(BookingError) as exc_info:
            ledger.process_refund(completed.payment_id)

        assert exc_info.value.code == ErrorCode.REFUND_NOT_ALLOWED

    def test_claim_moves_payment_to_refund_pending(self, ledger: PaymentLedger, completed):
        claimed = ledger.claim_refund(completed, Decimal("1500.00"))

        assert claimed.status == PaymentStatus.REFUND_PENDING
        assert claimed.refunded_amount == Decimal("1500.00")
        assert ledger.find_completed_for_booking(BOOKING_ID) is None

    def test_second_claim_rejected(self, ledger: PaymentLedger, completed):
        ledger.claim_refund(completed, Decimal("1500.00"))

        with pytest.raises(BookingError) as exc_info:
            ledger.claim_refund(completed, Decimal("1500.00"))

        assert exc_info.value.code == ErrorCode.REFUND_IN_PROGRESS

    def test_claimed_payment_can_be_refunded(self, ledger: PaymentLedger, completed):
        ledger.claim_refund(completed, Decimal("500.00"))

        record = ledger.process_refund(completed.payment_id, Decimal("500.00"))

        assert record.status == PaymentStatus.PARTIALLY_REFUNDED
        assert record.refunded_amount == Decimal("500.00")

    def test_released_claim_returns_to_completed(self, ledger: PaymentLedger, completed):
        ledger.claim_refund(completed, Decimal("1500.00"))

        ledger.release_refund_claim(completed.payment_id)

        record = ledger.get_payment(completed.payment_id)
        assert record.status == PaymentStatus.COMPLETED
        assert record.refunded_amount is None

    def test_webhook_does_not_undo_claim(self, ledger: PaymentLedger, completed):
        ledger.claim_refund(completed, Decimal("1500.00"))

        record = ledger.upsert_by_transaction_id(
            "pi_paid", PaymentPatch(status=PaymentStatus.COMPLETED), defaults=_attempt()
        )

        assert record.status == PaymentStatus.REFUND_PENDING


class TestLookups:
    """Tests for ledger queries."""

    def test_find_by_booking_id_newest_first(self, ledger: PaymentLedger):
        first = ledger.create_payment(_attempt(provider_order_id="1"))
        second = ledger.create_payment(_attempt(provider_order_id="2"))

        records = ledger.find_by_booking_id(BOOKING_ID)

        assert [r.payment_id for r in records] == [second.payment_id, first.payment_id]

    def test_find_by_provider_order_id(self, ledger: PaymentLedger):
        record = ledger.create_payment(_attempt(provider_order_id="9001"))

        assert ledger.find_by_provider_order_id("9001").payment_id == record.payment_id
        assert ledger.find_by_provider_order_id("unknown") is None

    def test_find_completed_for_booking(self, ledger: PaymentLedger):
        ledger.create_payment(_attempt(provider_order_id="1"))
        assert ledger.find_completed_for_booking(BOOKING_ID) is None

        paid = ledger.upsert_by_transaction_id(
            "pi_x", PaymentPatch(status=PaymentStatus.COMPLETED), defaults=_attempt()
        )
        assert ledger.find_completed_for_booking(BOOKING_ID).payment_id == paid.payment_id
