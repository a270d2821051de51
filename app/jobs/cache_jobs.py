"""
Cache Management Jobs

Evicts expired price quotes from the in-process cache backend.
Redis expires keys on its own, so the job is a no-op there.
"""

import logging

from app.services.cache_service import get_cache

logger = logging.getLogger(__name__)


async def cleanup_price_cache() -> int:
    """Drop expired entries from the price cache."""
    removed = await get_cache().cleanup_expired()
    if removed:
        logger.info(f"Price cache cleanup removed {removed} expired entries")
    return removed
