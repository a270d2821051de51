"""
Per-organization order numbering.

The organization's sequence row is read FOR UPDATE, so concurrent commits
in the same organization serialize on it for the rest of their transaction
and never observe the same number. The first commit of an organization
creates the row; if two commits race to create it, the loser's insert
fails on the unique constraint and the allocation is retried against the
winner's row.

Usage:
    service = OrderSequenceService(db)
    order_key = await service.next_number(organization_id)
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import ConflictError
from app.models.order import Order
from app.models.order_sequence import OrderSequence

logger = logging.getLogger(__name__)


class OrderSequenceService:
    """Allocate monotonically increasing order numbers per organization."""

    def __init__(self, db: AsyncSession, max_retries: Optional[int] = None):
        self.db = db
        self.max_retries = max_retries or settings.ORDER_SEQUENCE_MAX_RETRIES

    async def next_number(self, organization_id: uuid.UUID) -> int:
        """
        Take the next order number for an organization.

        Raises:
            ConflictError: the sequence row could not be created after retries
        """
        for attempt in range(1, self.max_retries + 1):
            sequence = await self._get_or_create_sequence(organization_id)
            if sequence is None:
                logger.warning(
                    f"Order sequence for org {organization_id} created concurrently "
                    f"(attempt {attempt}/{self.max_retries}), retrying"
                )
                continue

            sequence.current_number += 1
            await self.db.flush()
            logger.debug(f"Allocated order number {sequence.current_number} for org {organization_id}")
            return sequence.current_number

        raise ConflictError(f"Could not allocate an order number for organization {organization_id}")

    async def current_number(self, organization_id: uuid.UUID) -> int:
        """Last issued number without taking a new one."""
        result = await self.db.execute(
            select(OrderSequence.current_number).where(OrderSequence.organization_id == organization_id)
        )
        return result.scalar_one_or_none() or 0

    async def _lock_sequence(self, organization_id: uuid.UUID) -> Optional[OrderSequence]:
        result = await self.db.execute(
            select(OrderSequence)
            .where(OrderSequence.organization_id == organization_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _get_or_create_sequence(self, organization_id: uuid.UUID) -> Optional[OrderSequence]:
        """
        Locked sequence row for the organization, created on first use.

        Returns None when another transaction created the row first.
        """
        sequence = await self._lock_sequence(organization_id)
        if sequence:
            return sequence

        # Continue after any orders written before the sequence row existed
        existing_max = await self.db.scalar(
            select(func.coalesce(func.max(Order.order_key), 0)).where(
                Order.organization_id == organization_id
            )
        )
        try:
            async with self.db.begin_nested():
                self.db.add(OrderSequence(
                    organization_id=organization_id,
                    current_number=int(existing_max or 0),
                ))
        except IntegrityError:
            return None

        # Re-fetch with lock to ensure atomicity
        return await self._lock_sequence(organization_id)
