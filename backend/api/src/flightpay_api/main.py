"""FastAPI application for the flightpay REST API.

This package provides REST endpoints for:
- Health checks
- Bookings (create, read, cancel)
- Payments (handles, status, sync, refunds)
- Provider webhooks (Stripe, Paymob)

The same app runs under uvicorn (run_server) and on AWS Lambda behind API
Gateway (handler). The expiry sweep scheduler starts with the app lifespan.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from flightpay.config import get_settings
from flightpay.utils.logging import configure_logging, get_logger

from flightpay_api.exceptions import register_exception_handlers
from flightpay_api.middleware.correlation import CorrelationIdMiddleware
from flightpay_api.routes import bookings_router, health_router, payments_router, webhooks_router
from flightpay_api.scheduler import start_scheduler, stop_scheduler

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    logger.info("Starting flightpay API (environment=%s)", get_settings().environment)
    start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(
    title="Flightpay API",
    description="Flight booking and payment reconciliation API",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

register_exception_handlers(app)

# Include routers under /api prefix
app.include_router(health_router, prefix="/api")
app.include_router(bookings_router, prefix="/api")
app.include_router(payments_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")


# Lambda handler; on Lambda the sweep runs through scheduler.expiry_sweep_handler
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = False) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: False)
    """
    import uvicorn

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run(
            "flightpay_api.main:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["backend/api/src", "backend/shared/src"],
        )
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
