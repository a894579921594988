"""
Background job worker using APScheduler.
Sweeps expired sessions out of the stores on a fixed interval.

Reads already treat expired sessions as absent, so the sweep only reclaims
space; nothing depends on it running on time.
"""
import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import settings
from .hub import get_hub
from .sessions import get_session_service

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[BackgroundScheduler] = None


def purge_expired_sessions() -> int:
    """
    Delete expired sessions from the REST store and the relay hub's store.
    Called periodically by the scheduler.
    """
    removed = 0
    try:
        removed += get_session_service().purge_expired()
        hub_service = get_hub().service
        if hub_service.store is not get_session_service().store:
            removed += hub_service.purge_expired()
    except Exception as e:
        logger.error(f"Error purging expired sessions: {e}")
        return 0

    if removed:
        logger.info(f"Purge removed {removed} expired sessions")
    return removed


def start_scheduler():
    """Start the background scheduler."""
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return

    scheduler = BackgroundScheduler()

    # Expired session sweep
    scheduler.add_job(
        purge_expired_sessions,
        IntervalTrigger(minutes=settings.PURGE_INTERVAL_MINUTES),
        id="session_purge",
        name="Purge expired sessions",
        replace_existing=True
    )

    scheduler.start()
    logger.info("Background scheduler started")


def stop_scheduler():
    """Stop the background scheduler."""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler_status() -> dict:
    """Get scheduler status."""
    if scheduler is None:
        return {"running": False, "jobs": []}

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": str(job.next_run_time) if job.next_run_time else None
        })

    return {"running": scheduler.running, "jobs": jobs}


def init_worker():
    """Initialize the worker (call from FastAPI startup)."""
    start_scheduler()
