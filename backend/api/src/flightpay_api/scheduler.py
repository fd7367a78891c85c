"""Background expiry sweep.

Cancels bookings left unpaid past the booking timeout. Runs in an APScheduler
BackgroundScheduler thread next to the API process, with coalesce=True and
max_instances=1 so overlapping sweeps never run. Every update the sweep makes
is conditional, so concurrent webhooks and a sweep on another instance are
safe.
"""

from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler

from flightpay.config import get_settings
from flightpay.utils.logging import clear_correlation_id, get_logger, set_correlation_id

from flightpay_api.dependencies import get_booking_service

logger = get_logger(__name__)

EXPIRY_JOB_ID = "booking_expiry_sweep"

_scheduler: BackgroundScheduler | None = None
_last_result: dict[str, Any] | None = None


def run_expiry_sweep() -> int:
    """Run one expiry sweep.

    Returns:
        Number of bookings cancelled; 0 if the sweep failed.
    """
    global _last_result

    set_correlation_id()
    try:
        expired = get_booking_service().expire_pending_bookings()
        _last_result = {"status": "success", "expired": expired}
        logger.info("Expiry sweep finished: %d booking(s) expired", expired)
        return expired
    except Exception as e:
        _last_result = {"status": "failed", "error": str(e)[:200]}
        logger.exception("Expiry sweep failed")
        return 0
    finally:
        clear_correlation_id()


def start_scheduler() -> BackgroundScheduler | None:
    """Start the expiry sweep if enabled in settings.

    Returns:
        The running scheduler, or None when disabled.
    """
    global _scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled (FLIGHTPAY_SCHEDULER_ENABLED=false)")
        return None
    if _scheduler is not None and _scheduler.running:
        return _scheduler

    _scheduler = BackgroundScheduler(timezone="UTC")
    _scheduler.add_job(
        run_expiry_sweep,
        "interval",
        minutes=settings.expiry_sweep_interval_minutes,
        id=EXPIRY_JOB_ID,
        name="Expire unpaid bookings",
        coalesce=True,
        max_instances=1,
        replace_existing=True,
    )
    _scheduler.start()
    logger.info(
        "Scheduler started: expiry sweep every %d minute(s)",
        settings.expiry_sweep_interval_minutes,
    )
    return _scheduler


def stop_scheduler() -> None:
    """Stop the scheduler without waiting for a running sweep."""
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    _scheduler = None


def get_scheduler_status() -> dict[str, Any]:
    """Return scheduler state for the health endpoint."""
    running = _scheduler is not None and _scheduler.running
    next_run = None
    if running:
        job = _scheduler.get_job(EXPIRY_JOB_ID)
        if job is not None and job.next_run_time is not None:
            next_run = job.next_run_time.isoformat()
    return {
        "enabled": get_settings().scheduler_enabled,
        "running": running,
        "next_run_at": next_run,
        "last_result": _last_result,
    }


def expiry_sweep_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Lambda entry point for an EventBridge-scheduled expiry sweep.

    Args:
        event: EventBridge scheduled event (unused)
        context: Lambda context (unused)

    Returns:
        The number of bookings expired.
    """
    return {"expired": run_expiry_sweep()}
