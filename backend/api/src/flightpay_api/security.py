"""Caller identity for protected endpoints.

API Gateway validates the JWT and passes the user's subject claim in the
x-user-sub header. Routes that act on a user's bookings depend on
get_current_user_id; webhook routes do not.
"""

from fastapi import Header

from flightpay.models.errors import BookingError, ErrorCode

USER_SUB_HEADER = "x-user-sub"


def get_current_user_id(x_user_sub: str | None = Header(default=None)) -> str:
    """Return the authenticated user ID.

    Raises:
        BookingError: AUTH_REQUIRED if the header is missing or blank.
    """
    if not x_user_sub or not x_user_sub.strip():
        raise BookingError(ErrorCode.AUTH_REQUIRED)
    return x_user_sub.strip()
