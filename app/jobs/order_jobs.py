"""
Order Processing Jobs

Background jobs for committed orders:
- Resume fan-out for root orders whose post-commit fan-out never finished
  (process restarted between the root commit and the upstream writes)
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from sqlalchemy import select

from app.config import settings
from app.database import get_db_session
from app.models.order import Order, FanOutStatus
from app.services.fanout_service import FanOutService

logger = logging.getLogger(__name__)


async def resume_pending_fanouts(
    older_than_minutes: int = None,
    session_context=None,
    fanout_service: FanOutService = None,
) -> Dict[str, Any]:
    """
    Run fan-out again for root orders still marked pending.

    Returns a summary with the number of orders found and how many
    completed or failed.
    """
    older_than_minutes = (
        settings.FANOUT_RESUME_AFTER_MINUTES if older_than_minutes is None else older_than_minutes
    )
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
    session_context = session_context or get_db_session
    fanout_service = fanout_service or FanOutService()

    async with session_context() as session:
        result = await session.execute(
            select(Order.id).where(
                Order.fanout_status == FanOutStatus.PENDING.value,
                Order.parent_order_id.is_(None),
                Order.created_at <= cutoff,
            ).order_by(Order.created_at)
        )
        order_ids = list(result.scalars().all())

    summary = {"found": len(order_ids), "completed": 0, "failed": 0}
    for order_id in order_ids:
        outcome = await fanout_service.fan_out(order_id)
        if outcome.status == FanOutStatus.COMPLETED.value:
            summary["completed"] += 1
        else:
            summary["failed"] += 1

    if order_ids:
        logger.info(f"Resumed fan-out for {summary['found']} orders: {summary}")
    return summary
