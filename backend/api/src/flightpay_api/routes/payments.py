"""Payment endpoints.

Provides REST endpoints for:
- Requesting a Stripe client secret or Paymob payment key for a booking
- Reading a booking's payment status (re-checks Paymob while pending)
- Manually syncing a booking with its provider
- Refunding a completed payment
- Listing a booking's ledger records

All endpoints require the x-user-sub header and booking ownership. Payment
confirmation itself arrives through the webhook endpoints.
"""

from fastapi import APIRouter, Depends
from starlette.status import HTTP_201_CREATED

from flightpay.models import PaymentHandle, PaymentRecord, PaymentStatusView
from flightpay.services.payment_service import PaymentService

from flightpay_api.dependencies import get_payment_service
from flightpay_api.models.payments import (
    PaymentDetailsResponse,
    PaymentHandleRequest,
    RefundRequest,
)
from flightpay_api.security import get_current_user_id

router = APIRouter(tags=["payments"])

PROVIDER_ERROR_RESPONSES = {
    502: {"description": "Provider rejected the request"},
    503: {"description": "Provider unavailable after retries"},
}


@router.post(
    "/payments/handle",
    summary="Request payment handle",
    description="""
Register an order with the chosen provider and return the client-side handle.

**Notes:**
- `amount` and `currency` must equal the booking total exactly
- Stripe returns a PaymentIntent client secret, Paymob a payment key
- The booking stays pending until the provider's webhook confirms payment
""",
    response_model=PaymentHandle,
    status_code=HTTP_201_CREATED,
    responses={
        400: {"description": "Amount mismatch, unsupported provider or booking not payable"},
        401: {"description": "x-user-sub header missing"},
        403: {"description": "Booking belongs to another user"},
        404: {"description": "Booking not found"},
        **PROVIDER_ERROR_RESPONSES,
    },
)
def request_payment_handle(
    body: PaymentHandleRequest,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
) -> PaymentHandle:
    overrides = {"email": body.email, "phone_number": body.phone_number}
    return service.request_payment_handle(
        user_id,
        body.booking_id,
        body.amount,
        body.currency,
        body.provider,
        overrides,
    )


@router.get(
    "/payments/status/{booking_id}",
    summary="Get payment status",
    response_model=PaymentStatusView,
    responses={
        401: {"description": "x-user-sub header missing"},
        403: {"description": "Booking belongs to another user"},
        404: {"description": "Booking not found"},
    },
)
def get_payment_status(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
) -> PaymentStatusView:
    """Return the booking's payment status."""
    return service.get_payment_status(user_id, booking_id)


@router.post(
    "/payments/sync/{booking_id}",
    summary="Sync payment status",
    description="""
Ask the provider for the latest status of the booking's payment and apply it.

Use when a webhook is suspected lost. A remote success confirms the booking
exactly as the webhook would have.
""",
    response_model=PaymentStatusView,
    responses={
        401: {"description": "x-user-sub header missing"},
        403: {"description": "Booking belongs to another user"},
        404: {"description": "Booking or payment not found"},
        **PROVIDER_ERROR_RESPONSES,
    },
)
def sync_payment_status(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
) -> PaymentStatusView:
    service.bookings.get_booking_for_user(booking_id, user_id)
    return service.sync_status(booking_id)


@router.post(
    "/payments/refund",
    summary="Refund payment",
    description="""
Refund the booking's completed payment, fully or partially.

A full refund marks the booking's payment as refunded; a partial refund
leaves the booking untouched and the ledger record partially_refunded.
The payment is held as refund_pending while the provider is called, so a
second request for the same payment gets 409 until the first finishes.
""",
    response_model=PaymentRecord,
    responses={
        400: {"description": "Payment not refundable or amount too large"},
        401: {"description": "x-user-sub header missing"},
        403: {"description": "Booking belongs to another user"},
        404: {"description": "Booking or payment not found"},
        409: {"description": "A refund for this payment is already in progress"},
        **PROVIDER_ERROR_RESPONSES,
    },
)
def refund_payment(
    body: RefundRequest,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
) -> PaymentRecord:
    return service.refund_payment(user_id, body.booking_id, body.amount, body.reason)


@router.get(
    "/payments/details/{booking_id}",
    summary="List payment records",
    response_model=PaymentDetailsResponse,
    responses={
        401: {"description": "x-user-sub header missing"},
        403: {"description": "Booking belongs to another user"},
        404: {"description": "Booking not found"},
    },
)
def get_payment_details(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
) -> PaymentDetailsResponse:
    """List every ledger record for the booking, newest first."""
    payments = service.get_payment_details(booking_id, user_id)
    return PaymentDetailsResponse(booking_id=booking_id, payments=payments, total_count=len(payments))
