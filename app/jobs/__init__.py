"""
Background Jobs Module

Handles scheduled tasks for:
- Price cache cleanup
- Resuming pending order fan-out
"""

from app.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from app.jobs.cache_jobs import cleanup_price_cache
from app.jobs.order_jobs import resume_pending_fanouts

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "cleanup_price_cache",
    "resume_pending_fanouts",
]
