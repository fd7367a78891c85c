"""Structured logging with correlation IDs for booking and payment flows.

Provides:
- Correlation ID context shared by HTTP requests and scheduler jobs
- A formatter that prefixes every line with the correlation ID
- Helpers that log payment and webhook operations with consistent fields

Usage:
    from flightpay.utils.logging import get_logger, log_payment_operation

    logger = get_logger(__name__)
    log_payment_operation(logger, "request_payment_handle", booking_id="BKG-...")
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Any

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
NO_CORRELATION_ID = "no-correlation-id"


def generate_correlation_id() -> str:
    """Generate a new UUID-based correlation ID."""
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation ID for the current context.

    Args:
        correlation_id: Existing ID (e.g. from X-Correlation-ID). Generated if None.

    Returns:
        The correlation ID that was set
    """
    cid = correlation_id or generate_correlation_id()
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    """Get the current correlation ID, or None outside a request or job."""
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID context."""
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that stamps correlation_id on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


class StructuredFormatter(logging.Formatter):
    """Formatter that prefixes messages with the correlation ID."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return f"[{record.correlation_id}] {super().format(record)}"


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install the structured formatter on the root logger.

    Safe to call more than once; existing handlers are reformatted rather
    than duplicated.

    Args:
        level: Root log level
    """
    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        root.addHandler(logging.StreamHandler())
    for handler in root.handlers:
        handler.setFormatter(StructuredFormatter(LOG_FORMAT))
        if not any(isinstance(f, CorrelationIdFilter) for f in handler.filters):
            handler.addFilter(CorrelationIdFilter())


def get_logger(name: str) -> logging.Logger:
    """Get a logger with correlation ID support.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())
    return logger


def log_payment_operation(
    logger: logging.Logger,
    operation: str,
    *,
    payment_id: str | None = None,
    booking_id: str | None = None,
    transaction_id: str | None = None,
    amount_minor: int | None = None,
    status: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a payment operation with structured context.

    Args:
        logger: Logger instance
        operation: Operation name (e.g. "request_payment_handle", "process_refund")
        payment_id: Ledger payment ID if available
        booking_id: Booking ID if available
        transaction_id: Provider transaction ID if available
        amount_minor: Amount in minor units if relevant
        status: Payment status after the operation
        error: Error message if the operation failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"operation": operation}
    if payment_id:
        context["payment_id"] = payment_id
    if booking_id:
        context["booking_id"] = booking_id
    if transaction_id:
        context["transaction_id"] = transaction_id
    if amount_minor is not None:
        context["amount_minor"] = amount_minor
    if status:
        context["status"] = status
    if error:
        context["error"] = error
    context.update(extra)

    message = " | ".join(
        [f"Payment operation: {operation}"]
        + [f"{key}={value}" for key, value in context.items() if key != "operation"]
    )

    if error:
        logger.error(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_webhook_event(
    logger: logging.Logger,
    event_type: str,
    event_id: str,
    *,
    provider: str | None = None,
    booking_id: str | None = None,
    payment_id: str | None = None,
    transaction_id: str | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a webhook delivery with structured context.

    Args:
        logger: Logger instance
        event_type: Provider event type (e.g. "payment_intent.succeeded", "TRANSACTION")
        event_id: Provider event ID
        provider: Provider name
        booking_id: Resolved booking ID if available
        payment_id: Ledger payment ID if available
        transaction_id: Provider transaction ID if available
        result: Processing result (success, duplicate, skipped, ignored, error)
        error: Error message if processing failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"event_type": event_type, "event_id": event_id}
    if provider:
        context["provider"] = provider
    if booking_id:
        context["booking_id"] = booking_id
    if payment_id:
        context["payment_id"] = payment_id
    if transaction_id:
        context["transaction_id"] = transaction_id
    if result:
        context["result"] = result
    if error:
        context["error"] = error
    context.update(extra)

    msg_parts = [f"Webhook event: {event_type} ({event_id})"]
    if provider:
        msg_parts.append(f"provider={provider}")
    if result:
        msg_parts.append(f"result={result}")
    if booking_id:
        msg_parts.append(f"booking={booking_id}")
    if transaction_id:
        msg_parts.append(f"transaction={transaction_id}")
    if error:
        msg_parts.append(f"error={error}")
    message = " | ".join(msg_parts)

    if result == "error" or error:
        logger.error(message, extra=context)
    elif result in ("duplicate", "skipped", "ignored"):
        logger.warning(message, extra=context)
    else:
        logger.info(message, extra=context)
