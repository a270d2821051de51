"""
Affiliate points ledger.

Every balance mutation is paired, in the same transaction, with one log row
whose ``points`` equals the change of ``points_current``, so the balance
always equals the sum of the live log rows for (client, organization).

Balances are only updated by accumulation (``current = current + delta``).
Redemption re-checks the available balance inside the UPDATE itself.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, update, func, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidInputError, NotFoundError, InsufficientBalanceError
from app.models.affiliate import AffiliatePointBalance, AffiliatePointLog, PointsAction
from app.services.catalog_service import CatalogService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def spent_delta(points: Decimal) -> Decimal:
    """Lifetime-spent effect of a log row: debits count as spending."""
    return -points if points < 0 else ZERO


class AffiliatePointsService:
    """Points balance and log operations for one session."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.catalog = CatalogService(db)

    # ==================== Balance ====================

    async def apply_delta(
        self,
        client_id: uuid.UUID,
        organization_id: uuid.UUID,
        delta_current: Decimal,
        delta_spent: Decimal = ZERO,
    ) -> None:
        """
        Add deltas to the balance row, inserting it when missing.

        Lifetime spent never drops below zero.
        """
        delta_current = Decimal(delta_current)
        delta_spent = Decimal(delta_spent)

        if await self._accumulate(client_id, organization_id, delta_current, delta_spent):
            return

        try:
            async with self.db.begin_nested():
                self.db.add(AffiliatePointBalance(
                    client_id=client_id,
                    organization_id=organization_id,
                    points_current=delta_current,
                    points_spent=max(delta_spent, ZERO),
                ))
        except IntegrityError:
            # Another writer created the row first
            logger.warning(f"Balance row for client {client_id} created concurrently, accumulating")
            if not await self._accumulate(client_id, organization_id, delta_current, delta_spent):
                raise

    async def _accumulate(
        self,
        client_id: uuid.UUID,
        organization_id: uuid.UUID,
        delta_current: Decimal,
        delta_spent: Decimal,
    ) -> bool:
        new_spent = AffiliatePointBalance.points_spent + delta_spent
        result = await self.db.execute(
            update(AffiliatePointBalance)
            .where(
                AffiliatePointBalance.client_id == client_id,
                AffiliatePointBalance.organization_id == organization_id,
            )
            .values(
                points_current=AffiliatePointBalance.points_current + delta_current,
                points_spent=case((new_spent < 0, 0), else_=new_spent),
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def get_balance(
        self,
        client_id: uuid.UUID,
        organization_id: uuid.UUID,
    ) -> Optional[AffiliatePointBalance]:
        result = await self.db.execute(
            select(AffiliatePointBalance)
            .where(
                AffiliatePointBalance.client_id == client_id,
                AffiliatePointBalance.organization_id == organization_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def available_points(self, client_id: uuid.UUID, organization_id: uuid.UUID) -> Decimal:
        balance = await self.get_balance(client_id, organization_id)
        return Decimal(balance.points_current) if balance else ZERO

    # ==================== Ledger mutations ====================

    async def record(
        self,
        client_id: uuid.UUID,
        organization_id: uuid.UUID,
        points: Decimal,
        action: str,
        description: Optional[str] = None,
        source_client_id: Optional[uuid.UUID] = None,
    ) -> AffiliatePointLog:
        """Append a log row and apply its delta. Negative points count as spent."""
        points = Decimal(points)
        if points == 0:
            raise InvalidInputError("Points must be non-zero")
        await self._require_client(organization_id, client_id)

        log = AffiliatePointLog(
            organization_id=organization_id,
            client_id=client_id,
            points=points,
            action=action,
            description=description,
            source_client_id=source_client_id,
        )
        self.db.add(log)
        await self.db.flush()

        await self.apply_delta(client_id, organization_id, points, spent_delta(points))
        logger.info(f"Points {action}: {points} for client {client_id} in org {organization_id}")
        return log

    async def redeem(
        self,
        client_id: uuid.UUID,
        organization_id: uuid.UUID,
        points_needed: Decimal,
        action: str = PointsAction.REDEEM.value,
        description: Optional[str] = None,
    ) -> AffiliatePointLog:
        """
        Debit points when the balance covers them.

        Raises:
            InsufficientBalanceError: balance below ``points_needed``; nothing is written
        """
        points_needed = Decimal(points_needed)
        if points_needed <= 0:
            raise InvalidInputError("Points to redeem must be positive")

        result = await self.db.execute(
            update(AffiliatePointBalance)
            .where(
                AffiliatePointBalance.client_id == client_id,
                AffiliatePointBalance.organization_id == organization_id,
                AffiliatePointBalance.points_current >= points_needed,
            )
            .values(
                points_current=AffiliatePointBalance.points_current - points_needed,
                points_spent=AffiliatePointBalance.points_spent + points_needed,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            available = await self.available_points(client_id, organization_id)
            logger.info(
                f"Redemption refused for client {client_id}: required {points_needed}, available {available}"
            )
            raise InsufficientBalanceError(required=points_needed, available=available)

        log = AffiliatePointLog(
            organization_id=organization_id,
            client_id=client_id,
            points=-points_needed,
            action=action,
            description=description,
        )
        self.db.add(log)
        await self.db.flush()
        logger.info(f"Redeemed {points_needed} points for client {client_id} ({action})")
        return log

    async def refund(
        self,
        client_id: uuid.UUID,
        organization_id: uuid.UUID,
        points: Decimal,
        action: str = PointsAction.REFUND.value,
        description: Optional[str] = None,
    ) -> AffiliatePointLog:
        """Give points back and reduce lifetime spent by the same amount."""
        points = Decimal(points)
        if points <= 0:
            raise InvalidInputError("Points to refund must be positive")

        log = AffiliatePointLog(
            organization_id=organization_id,
            client_id=client_id,
            points=points,
            action=action,
            description=description,
        )
        self.db.add(log)
        await self.db.flush()

        await self.apply_delta(client_id, organization_id, points, -points)
        logger.info(f"Refunded {points} points to client {client_id} ({action})")
        return log

    async def update_log(
        self,
        organization_id: uuid.UUID,
        log_id: uuid.UUID,
        points: Optional[Decimal] = None,
        action: Optional[str] = None,
        description: Optional[str] = None,
    ) -> AffiliatePointLog:
        """Edit a log row and apply the difference between old and new deltas."""
        log = await self.get_log(organization_id, log_id, lock=True)

        if points is not None:
            new_points = Decimal(points)
            if new_points == 0:
                raise InvalidInputError("Points must be non-zero")
            old_points = Decimal(log.points)
            if new_points != old_points:
                await self.apply_delta(
                    log.client_id,
                    organization_id,
                    new_points - old_points,
                    spent_delta(new_points) - spent_delta(old_points),
                )
                log.points = new_points
        if action is not None:
            log.action = action
        if description is not None:
            log.description = description

        await self.db.flush()
        logger.info(f"Updated points log {log_id} in org {organization_id}")
        return log

    async def delete_log(self, organization_id: uuid.UUID, log_id: uuid.UUID) -> None:
        """Delete a log row and reverse its effect on the balance."""
        log = await self.get_log(organization_id, log_id, lock=True)
        old_points = Decimal(log.points)

        await self.apply_delta(log.client_id, organization_id, -old_points, -spent_delta(old_points))
        await self.db.delete(log)
        await self.db.flush()
        logger.info(f"Deleted points log {log_id} ({old_points}) in org {organization_id}")

    # ==================== Queries ====================

    async def get_log(
        self,
        organization_id: uuid.UUID,
        log_id: uuid.UUID,
        lock: bool = False,
    ) -> AffiliatePointLog:
        query = select(AffiliatePointLog).where(
            AffiliatePointLog.id == log_id,
            AffiliatePointLog.organization_id == organization_id,
        )
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        log = result.scalar_one_or_none()
        if log is None:
            raise NotFoundError(f"Points log {log_id} not found")
        return log

    async def list_logs(
        self,
        organization_id: uuid.UUID,
        client_id: Optional[uuid.UUID] = None,
        action: Optional[str] = None,
        direction: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        page: int = 1,
        size: int = 50,
    ) -> Tuple[List[AffiliatePointLog], int]:
        """
        Filtered, paginated log rows, newest first.

        Args:
            direction: "gains" for positive rows, "losses" for negative rows
        """
        conditions = [AffiliatePointLog.organization_id == organization_id]
        if client_id:
            conditions.append(AffiliatePointLog.client_id == client_id)
        if action:
            conditions.append(AffiliatePointLog.action == action)
        if direction == "gains":
            conditions.append(AffiliatePointLog.points > 0)
        elif direction == "losses":
            conditions.append(AffiliatePointLog.points < 0)
        elif direction:
            raise InvalidInputError("direction must be 'gains' or 'losses'")
        if date_from:
            conditions.append(AffiliatePointLog.created_at >= date_from)
        if date_to:
            conditions.append(AffiliatePointLog.created_at <= date_to)

        total = await self.db.scalar(
            select(func.count()).select_from(AffiliatePointLog).where(*conditions)
        )
        result = await self.db.execute(
            select(AffiliatePointLog)
            .where(*conditions)
            .order_by(AffiliatePointLog.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        return list(result.scalars().all()), total or 0

    async def log_sum(self, client_id: uuid.UUID, organization_id: uuid.UUID) -> Decimal:
        """Sum of live log rows; equals points_current."""
        total = await self.db.scalar(
            select(func.coalesce(func.sum(AffiliatePointLog.points), 0)).where(
                AffiliatePointLog.client_id == client_id,
                AffiliatePointLog.organization_id == organization_id,
            )
        )
        return Decimal(str(total or 0))

    async def _require_client(self, organization_id: uuid.UUID, client_id: uuid.UUID) -> None:
        if await self.catalog.get_client(organization_id, client_id) is None:
            raise NotFoundError(f"Client {client_id} not found")
