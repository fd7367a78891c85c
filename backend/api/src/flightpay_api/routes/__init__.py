"""API routes package.

This package contains FastAPI routers for all REST API endpoints.
Routers are organized by domain:

- health: Liveness and scheduler state
- bookings: Booking creation, reads and cancellation
- payments: Payment handles, status, sync and refunds
- webhooks: Stripe and Paymob notifications (no user identity)

All routers are registered in main.py with /api prefix.
"""

from flightpay_api.routes.bookings import router as bookings_router
from flightpay_api.routes.health import router as health_router
from flightpay_api.routes.payments import router as payments_router
from flightpay_api.routes.webhooks import router as webhooks_router

__all__ = [
    "bookings_router",
    "health_router",
    "payments_router",
    "webhooks_router",
]
