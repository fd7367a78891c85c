"""Webhook endpoints for payment providers.

Provides endpoints for:
- Stripe events (payment_intent.succeeded, payment_intent.payment_failed, ...)
- Paymob transaction callbacks

These endpoints do NOT require user identity; they receive signed payloads
from the providers. The raw body is read before any parsing because the
signature covers the exact bytes sent.
"""

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from flightpay.models import ReconciliationResult
from flightpay.services.webhook_reconciler import WebhookReconciler
from flightpay.utils.logging import get_logger

from flightpay_api.dependencies import get_webhook_reconciler

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])

STRIPE_SIGNATURE_HEADER = "Stripe-Signature"
PAYMOB_SIGNATURE_HEADER = "X-Paymob-Signature"
PAYMOB_SIGNATURE_PARAM = "hmac"

WEBHOOK_RESPONSES = {
    400: {"description": "Invalid signature or malformed payload"},
    422: {"description": "Event does not match any booking"},
}


@router.post(
    "/webhooks/stripe",
    summary="Stripe webhook",
    response_model=ReconciliationResult,
    responses=WEBHOOK_RESPONSES,
)
async def stripe_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
) -> ReconciliationResult:
    """Verify and apply a Stripe event.

    Duplicate deliveries answer 200 with processing_result=duplicate so
    Stripe stops retrying them.
    """
    payload = await request.body()
    signature = request.headers.get(STRIPE_SIGNATURE_HEADER)
    return await run_in_threadpool(reconciler.handle_stripe_webhook, payload, signature)


@router.post(
    "/webhooks/paymob",
    summary="Paymob webhook",
    response_model=ReconciliationResult,
    responses=WEBHOOK_RESPONSES,
)
async def paymob_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
) -> ReconciliationResult:
    """Verify and apply a Paymob transaction callback.

    Paymob sends the HMAC as the `hmac` query parameter; the header form is
    accepted for proxies that move it.
    """
    payload = await request.body()
    signature = request.query_params.get(PAYMOB_SIGNATURE_PARAM) or request.headers.get(
        PAYMOB_SIGNATURE_HEADER
    )
    if signature is None:
        logger.warning("Paymob webhook received without HMAC")
    return await run_in_threadpool(reconciler.handle_paymob_webhook, payload, signature)
