"""
Inventory reservation across warehouses.

Order commit uses the two-phase path:
1. check_availability() - every demand must be coverable (or backorderable)
   before anything is written.
2. reserve() - locks the matching stock rows FOR UPDATE and decrements them
   greedily, largest row first.

Cart mutation uses adjust_stock(), a relaxed single-row path that must not
be used at order commit.
"""
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, OutOfStockError
from app.models.affiliate import AffiliateProduct
from app.models.product import Product
from app.models.warehouse import WarehouseStock

logger = logging.getLogger(__name__)


@dataclass
class StockDemand:
    """Requested quantity of a product (or variation) for a country."""
    product_id: uuid.UUID
    country: str
    quantity: int
    variation_id: Optional[uuid.UUID] = None

    @property
    def key(self) -> Tuple[uuid.UUID, Optional[uuid.UUID], str]:
        return (self.product_id, self.variation_id, self.country.upper())


@dataclass
class ReservationResult:
    """Outcome of a committed reservation."""
    allocations: List[Dict] = field(default_factory=list)
    backordered: List[Dict] = field(default_factory=list)


def merge_demands(demands: Iterable[StockDemand]) -> List[StockDemand]:
    """Sum demands sharing (product, variation, country), keeping first-seen order."""
    merged: "OrderedDict[tuple, StockDemand]" = OrderedDict()
    for demand in demands:
        if demand.quantity <= 0:
            continue
        existing = merged.get(demand.key)
        if existing is None:
            merged[demand.key] = StockDemand(
                product_id=demand.product_id,
                country=demand.country.upper(),
                quantity=demand.quantity,
                variation_id=demand.variation_id,
            )
        else:
            existing.quantity += demand.quantity
    return list(merged.values())


class InventoryService:
    """Warehouse stock reads and mutations for one session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== Queries ====================

    def _stock_conditions(
        self,
        organization_id: uuid.UUID,
        product_id: uuid.UUID,
        variation_id: Optional[uuid.UUID],
        country: str,
        is_affiliate: bool = False,
    ) -> list:
        column = WarehouseStock.affiliate_product_id if is_affiliate else WarehouseStock.product_id
        conditions = [
            WarehouseStock.organization_id == organization_id,
            column == product_id,
            WarehouseStock.country == country.upper(),
        ]
        if variation_id is None:
            conditions.append(WarehouseStock.variation_id.is_(None))
        else:
            conditions.append(WarehouseStock.variation_id == variation_id)
        return conditions

    async def _get_product(self, organization_id: uuid.UUID, product_id: uuid.UUID) -> Product:
        result = await self.db.execute(
            select(Product).where(
                Product.id == product_id,
                Product.organization_id == organization_id,
            )
        )
        product = result.scalar_one_or_none()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    async def available_quantity(
        self,
        organization_id: uuid.UUID,
        product_id: uuid.UUID,
        variation_id: Optional[uuid.UUID],
        country: str,
    ) -> int:
        """Sum of positive stock over every warehouse row for (product, variation, country)."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(WarehouseStock.quantity), 0)).where(
                *self._stock_conditions(organization_id, product_id, variation_id, country),
                WarehouseStock.quantity > 0,
            )
        )
        return int(result.scalar() or 0)

    async def warehouse_stock(
        self,
        organization_id: uuid.UUID,
        product_id: uuid.UUID,
        country: Optional[str] = None,
    ) -> List[WarehouseStock]:
        query = select(WarehouseStock).where(
            WarehouseStock.organization_id == organization_id,
            WarehouseStock.product_id == product_id,
        )
        if country:
            query = query.where(WarehouseStock.country == country.upper())
        result = await self.db.execute(query.order_by(WarehouseStock.quantity.desc()))
        return list(result.scalars().all())

    # ==================== Order commit path ====================

    async def check_availability(
        self,
        organization_id: uuid.UUID,
        demands: Iterable[StockDemand],
    ) -> List[Dict]:
        """
        Pre-check pass. Returns the failing demands as
        ``{product_id, requested, available}``; empty means every demand passes.
        Products without stock management or with backorders always pass.
        """
        failures = []
        for demand in merge_demands(demands):
            product = await self._get_product(organization_id, demand.product_id)
            if not product.manage_stock or product.allow_backorders:
                continue

            available = await self.available_quantity(
                organization_id, demand.product_id, demand.variation_id, demand.country
            )
            if available < demand.quantity:
                failure = {
                    "product_id": str(demand.product_id),
                    "requested": demand.quantity,
                    "available": available,
                }
                if demand.variation_id is not None:
                    failure["variation_id"] = str(demand.variation_id)
                failures.append(failure)
        return failures

    async def reserve(
        self,
        organization_id: uuid.UUID,
        demands: Iterable[StockDemand],
    ) -> ReservationResult:
        """
        Reserve stock for every demand or raise OutOfStockError.

        The caller owns the transaction: on error it must roll back so any
        rows already decremented here are restored.

        Raises:
            OutOfStockError: a demand cannot be covered and backorders are off
        """
        merged = merge_demands(demands)

        failures = await self.check_availability(organization_id, merged)
        if failures:
            logger.info(f"Stock pre-check failed for org {organization_id}: {failures}")
            raise OutOfStockError(failures)

        result = ReservationResult()
        for demand in merged:
            product = await self._get_product(organization_id, demand.product_id)
            if not product.manage_stock:
                continue

            rows_result = await self.db.execute(
                select(WarehouseStock)
                .where(
                    *self._stock_conditions(
                        organization_id, demand.product_id, demand.variation_id, demand.country
                    ),
                    WarehouseStock.quantity > 0,
                )
                .order_by(WarehouseStock.quantity.desc(), WarehouseStock.created_at)
                .with_for_update()
            )
            rows = list(rows_result.scalars().all())

            remaining = demand.quantity
            for row in rows:
                if remaining <= 0:
                    break
                take = min(row.quantity, remaining)
                row.quantity -= take
                remaining -= take
                result.allocations.append({
                    "product_id": str(demand.product_id),
                    "warehouse_id": str(row.warehouse_id) if row.warehouse_id else None,
                    "quantity": take,
                })

            if remaining > 0:
                if not product.allow_backorders:
                    # Stock changed between the pre-check and the locking read
                    available = demand.quantity - remaining
                    raise OutOfStockError([{
                        "product_id": str(demand.product_id),
                        "requested": demand.quantity,
                        "available": available,
                    }])
                await self._record_backorder(organization_id, demand, remaining, rows)
                result.backordered.append({
                    "product_id": str(demand.product_id),
                    "quantity": remaining,
                })

        await self.db.flush()
        logger.info(
            f"Reserved stock for org {organization_id}: "
            f"{len(result.allocations)} row allocations, {len(result.backordered)} backorders"
        )
        return result

    async def _record_backorder(
        self,
        organization_id: uuid.UUID,
        demand: StockDemand,
        remaining: int,
        rows: List[WarehouseStock],
    ) -> None:
        """Push the unsatisfied amount below zero on the largest row, or a new row."""
        target = rows[0] if rows else None
        if target is None:
            fallback = await self.db.execute(
                select(WarehouseStock)
                .where(*self._stock_conditions(
                    organization_id, demand.product_id, demand.variation_id, demand.country
                ))
                .order_by(WarehouseStock.created_at)
                .limit(1)
                .with_for_update()
            )
            target = fallback.scalar_one_or_none()

        if target is None:
            target = WarehouseStock(
                organization_id=organization_id,
                product_id=demand.product_id,
                variation_id=demand.variation_id,
                country=demand.country.upper(),
                quantity=0,
            )
            self.db.add(target)
        target.quantity -= remaining
        logger.info(
            f"Backordered {remaining} of product {demand.product_id} ({demand.country})"
        )

    async def release(
        self,
        organization_id: uuid.UUID,
        demands: Iterable[StockDemand],
    ) -> None:
        """Return reserved quantities to stock (order cancellation)."""
        for demand in merge_demands(demands):
            product = await self._get_product(organization_id, demand.product_id)
            if not product.manage_stock:
                continue
            await self._apply_to_first_row(
                organization_id, demand.product_id, demand.variation_id,
                demand.country, demand.quantity, is_affiliate=False,
            )
        await self.db.flush()

    # ==================== Cart mutation path ====================

    async def adjust_stock(
        self,
        organization_id: uuid.UUID,
        product_id: uuid.UUID,
        variation_id: Optional[uuid.UUID],
        country: str,
        delta: int,
    ) -> None:
        """
        Relaxed single-row adjustment on the oldest matching row.

        Products without stock management are ignored. Without backorders a
        decrement below zero raises OutOfStockError; with backorders the row
        may go negative. A row is created when none exists.
        """
        if not delta:
            return

        meta = await self._stock_meta(organization_id, product_id)
        if meta is None:
            return
        manage_stock, allow_backorders, is_affiliate = meta
        if not manage_stock:
            return

        row = await self._first_row(organization_id, product_id, variation_id, country, is_affiliate)
        current = row.quantity if row is not None else 0
        new_quantity = current + delta

        if delta < 0 and new_quantity < 0 and not allow_backorders:
            raise OutOfStockError([{
                "product_id": str(product_id),
                "requested": -delta,
                "available": max(current, 0),
            }])

        if row is None:
            row = self._new_row(organization_id, product_id, variation_id, country, is_affiliate)
        row.quantity = new_quantity
        await self.db.flush()

    async def _stock_meta(
        self,
        organization_id: uuid.UUID,
        product_id: uuid.UUID,
    ) -> Optional[Tuple[bool, bool, bool]]:
        product = await self.db.execute(
            select(Product.manage_stock, Product.allow_backorders).where(
                Product.id == product_id,
                Product.organization_id == organization_id,
            )
        )
        row = product.first()
        if row is not None:
            return bool(row.manage_stock), bool(row.allow_backorders), False

        affiliate = await self.db.execute(
            select(AffiliateProduct.manage_stock, AffiliateProduct.allow_backorders).where(
                AffiliateProduct.id == product_id,
                AffiliateProduct.organization_id == organization_id,
            )
        )
        row = affiliate.first()
        if row is not None:
            return bool(row.manage_stock), bool(row.allow_backorders), True
        return None

    async def _first_row(
        self,
        organization_id: uuid.UUID,
        product_id: uuid.UUID,
        variation_id: Optional[uuid.UUID],
        country: str,
        is_affiliate: bool,
    ) -> Optional[WarehouseStock]:
        result = await self.db.execute(
            select(WarehouseStock)
            .where(*self._stock_conditions(organization_id, product_id, variation_id, country, is_affiliate))
            .order_by(WarehouseStock.created_at)
            .limit(1)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    def _new_row(
        self,
        organization_id: uuid.UUID,
        product_id: uuid.UUID,
        variation_id: Optional[uuid.UUID],
        country: str,
        is_affiliate: bool,
    ) -> WarehouseStock:
        row = WarehouseStock(
            organization_id=organization_id,
            product_id=None if is_affiliate else product_id,
            affiliate_product_id=product_id if is_affiliate else None,
            variation_id=variation_id,
            country=country.upper(),
            quantity=0,
        )
        self.db.add(row)
        return row

    async def _apply_to_first_row(
        self,
        organization_id: uuid.UUID,
        product_id: uuid.UUID,
        variation_id: Optional[uuid.UUID],
        country: str,
        delta: int,
        is_affiliate: bool,
    ) -> None:
        row = await self._first_row(organization_id, product_id, variation_id, country, is_affiliate)
        if row is None:
            row = self._new_row(organization_id, product_id, variation_id, country, is_affiliate)
        row.quantity = (row.quantity or 0) + delta
