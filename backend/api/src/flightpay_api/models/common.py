"""Shared API request/response models.

The error body format lives in flightpay.models.errors and is re-exported
here for route response declarations.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from flightpay.models.errors import ErrorCode, ErrorResponse

__all__ = [
    "ErrorCode",
    "ErrorResponse",
    "HealthResponse",
]


class HealthResponse(BaseModel):
    """Liveness response."""

    model_config = ConfigDict(strict=True)

    status: str = Field(default="ok", examples=["ok"])
    timestamp: str = Field(..., description="Current server time (ISO 8601, UTC)")
    service: str = "flightpay-api"
    environment: str
    scheduler: dict[str, Any] | None = None
