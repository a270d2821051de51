"""
APScheduler Configuration

Background job scheduler for the order core:
- Price cache cleanup
- Resuming fan-out for root orders left pending
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from app.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone='UTC'
)


async def run_job(job_name: str):
    """
    Wrapper called by APScheduler.

    Errors are logged so one failing run never unschedules the job.
    """
    from app.jobs.cache_jobs import cleanup_price_cache
    from app.jobs.order_jobs import resume_pending_fanouts

    jobs = {
        'cleanup_price_cache': cleanup_price_cache,
        'resume_pending_fanouts': resume_pending_fanouts,
    }
    try:
        result = await jobs[job_name]()
        logger.debug(f"Job '{job_name}' completed: {result}")
    except Exception as e:
        logger.error(f"Job '{job_name}' failed: {e}")


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        # Evict expired price quotes
        scheduler.add_job(
            run_job,
            'interval',
            minutes=settings.CACHE_CLEANUP_INTERVAL_MINUTES,
            args=['cleanup_price_cache'],
            id='cleanup_price_cache',
            name='Price Cache Cleanup',
            replace_existing=True,
        )

        # Resume fan-out left pending by a restart
        scheduler.add_job(
            run_job,
            'interval',
            minutes=settings.FANOUT_RESUME_INTERVAL_MINUTES,
            args=['resume_pending_fanouts'],
            id='resume_pending_fanouts',
            name='Resume Pending Fan-Out',
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Background job scheduler started")

        # Log all scheduled jobs
        jobs = scheduler.get_jobs()
        for job in jobs:
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
