"""Health check endpoint."""

import datetime as dt

from fastapi import APIRouter

from flightpay.config import get_settings

from flightpay_api.models.common import HealthResponse
from flightpay_api.scheduler import get_scheduler_status

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    summary="Health check",
    response_model=HealthResponse,
)
def health() -> HealthResponse:
    """Liveness probe; also reports the expiry scheduler's state."""
    return HealthResponse(
        timestamp=dt.datetime.now(dt.UTC).isoformat(),
        environment=get_settings().environment,
        scheduler=get_scheduler_status(),
    )
