"""Exception handlers for FastAPI application.

Converts domain errors into HTTP responses with the standard error body
({success, error_code, message, recovery, details}).
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from flightpay.models.errors import BookingError, ErrorCode, ErrorResponse
from flightpay.utils.logging import get_logger

logger = get_logger(__name__)

# Codes not listed here (validation and state errors) map to 400
ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    # Authentication -> 401 Unauthorized
    ErrorCode.AUTH_REQUIRED: HTTP_401_UNAUTHORIZED,
    # Authorization -> 403 Forbidden
    ErrorCode.UNAUTHORIZED: HTTP_403_FORBIDDEN,
    # Not found errors -> 404 Not Found
    ErrorCode.BOOKING_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.PAYMENT_NOT_FOUND: HTTP_404_NOT_FOUND,
    # Uniqueness -> 409 Conflict
    ErrorCode.BOOKING_REF_CONFLICT: HTTP_409_CONFLICT,
    ErrorCode.REFUND_IN_PROGRESS: HTTP_409_CONFLICT,
    # Webhook that names no known booking -> 422
    ErrorCode.WEBHOOK_BOOKING_UNRESOLVED: HTTP_422_UNPROCESSABLE_ENTITY,
    # Provider failures
    ErrorCode.PROVIDER_REQUEST_REJECTED: HTTP_502_BAD_GATEWAY,
    ErrorCode.PROVIDER_UNAVAILABLE: HTTP_503_SERVICE_UNAVAILABLE,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode.

    Args:
        code: The ErrorCode to map

    Returns:
        HTTP status code, defaults to 400 if not explicitly mapped.
    """
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    """Render a BookingError with its mapped HTTP status."""
    status_code = get_http_status_for_error(exc.code)
    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.code.value, exc.details)
    return JSONResponse(
        status_code=status_code,
        content=exc.to_error_response().model_dump(mode="json"),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request schema errors as VALIDATION_FAILED.

    Args:
        request: The incoming request
        exc: FastAPI validation error

    Returns:
        JSONResponse (400) listing each failing field.
    """
    details = {
        ".".join(str(part) for part in error.get("loc", ())): str(error.get("msg", ""))
        for error in exc.errors()
    }
    response = ErrorResponse.from_code(ErrorCode.VALIDATION_FAILED, details or None)
    return JSONResponse(
        status_code=HTTP_400_BAD_REQUEST,
        content=response.model_dump(mode="json"),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions with a generic error response.

    Args:
        request: The incoming request
        exc: The uncaught exception

    Returns:
        JSONResponse with 500 status and generic error message.
    """
    logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, exc)

    # Internal details stay in the log
    error_response = {
        "success": False,
        "error_code": "ERR_INTERNAL",
        "message": "An unexpected error occurred",
        "recovery": "Please try again later or contact support",
        "details": None,
    }
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Args:
        app: The FastAPI application instance.
    """
    app.add_exception_handler(BookingError, booking_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
