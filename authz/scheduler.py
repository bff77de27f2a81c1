"""
Expiry sweep

Moves lapsed assignments and delegations to the expired state on a
recurring APScheduler job. Decisions never depend on it: reads always
re-check validity windows. The sweep only keeps stored state honest.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


def create_scheduler() -> AsyncIOScheduler:
    return AsyncIOScheduler(timezone="UTC")


async def sweep_expired_grants(admin_service) -> tuple[int, int]:
    """Run one sweep. Returns (assignments, delegations) expired, or (0, 0) on failure."""
    try:
        assignments, delegations = await admin_service.expire_stale_grants()
    except Exception as exc:
        logger.warning("expiry_sweep: sweep failed: %s", exc)
        return 0, 0

    if assignments or delegations:
        logger.info("expiry_sweep: expired %d assignments, %d delegations", assignments, delegations)
    return assignments, delegations


def install_expiry_sweep(scheduler: AsyncIOScheduler, admin_service, interval_minutes: int = 5) -> None:
    """
    Register the expiry sweep with the application's scheduler.

    Args:
        scheduler: The application's AsyncIOScheduler.
        admin_service: AdminService whose expire_stale_grants() runs each tick.
        interval_minutes: How often to run.
    """
    scheduler.add_job(
        sweep_expired_grants,
        trigger=IntervalTrigger(minutes=interval_minutes),
        args=[admin_service],
        id="expiry_sweep",
        replace_existing=True,
        max_instances=1,
    )
    logger.info("expiry_sweep: installed (interval=%dm)", interval_minutes)
