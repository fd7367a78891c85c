"""Normalized provider webhook events.

Provider payloads are parsed and classified once, right after signature
verification, into one of three variants. Reconciliation code only ever
sees these models.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from .enums import PaymentOutcome, PaymentProvider, PaymentStatus, ProcessingResult


class _ProviderEventBase(BaseModel):
    provider: PaymentProvider
    event_id: str = Field(..., description="Provider event ID (evt_... or Paymob transaction ID)")
    event_type: str = Field(..., examples=["payment_intent.succeeded", "TRANSACTION"])
    transaction_id: str | None = None
    provider_order_id: str | None = None
    merchant_order_id: str | None = Field(
        default=None, description="Booking ID echoed back by the provider"
    )
    amount_minor: int | None = None
    currency: str | None = None
    verified: bool = Field(
        default=True,
        description="False when accepted by structural match instead of signature",
    )
    raw: dict[str, Any] = Field(default_factory=dict)


class PaymentSucceeded(_ProviderEventBase):
    """Provider confirmed the payment."""

    outcome: Literal[PaymentOutcome.SUCCESS] = PaymentOutcome.SUCCESS


class PaymentPending(_ProviderEventBase):
    """Payment is still being processed by the provider."""

    outcome: Literal[PaymentOutcome.PENDING] = PaymentOutcome.PENDING


class PaymentFailed(_ProviderEventBase):
    """Payment failed, was declined or was cancelled."""

    outcome: Literal[PaymentOutcome.FAILURE] = PaymentOutcome.FAILURE
    ledger_status: PaymentStatus = PaymentStatus.FAILED
    failure_code: str | None = None
    failure_message: str | None = None


ProviderEvent = Annotated[
    Union[PaymentSucceeded, PaymentPending, PaymentFailed],
    Field(discriminator="outcome"),
]


class ReconciliationResult(BaseModel):
    """Outcome of handling one webhook delivery."""

    received: bool = True
    event_id: str | None = None
    event_type: str | None = None
    processing_result: ProcessingResult
    booking_id: str | None = None
    payment_id: str | None = None
    outcome: PaymentOutcome | None = None
    message: str | None = None
