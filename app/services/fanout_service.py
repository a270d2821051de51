"""
Cross-organization order fan-out.

After a root order commits, every cart line whose product is mapped to a
supplier's source product produces an upstream order in the supplier
organization. Upstream orders fan out again through their own mappings,
hop by hop, until no mapping remains or the depth cap is reached.
"""
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import CommerceError, InternalError, InvalidInputError, NotFoundError
from app.database import async_session_factory
from app.models.cart import Cart, CartLine
from app.models.client import Client
from app.models.order import Order, OrderStatus, FanOutStatus
from app.models.product import Product, country_price
from app.models.shared_product import SharedProductMapping
from app.services.cart_service import compute_cart_hash
from app.services.catalog_service import CatalogService
from app.services.order_sequence_service import OrderSequenceService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
FANOUT_CHANNEL = "dropship"


@dataclass
class FanOutResult:
    root_order_id: uuid.UUID
    status: str = FanOutStatus.COMPLETED.value
    created_order_ids: List[uuid.UUID] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    depth: int = 0


class FanOutService:
    """Create upstream orders for a committed root order."""

    def __init__(
        self,
        session_factory: Optional[Callable] = None,
        max_depth: Optional[int] = None,
    ):
        self.session_factory = session_factory or async_session_factory
        self.max_depth = max_depth if max_depth is not None else settings.FANOUT_MAX_DEPTH

    async def fan_out(self, root_order_id: uuid.UUID) -> FanOutResult:
        """
        Walk the mapping graph from the root order.

        Each upstream order is written in its own savepoint; a failing group
        is recorded and the remaining groups continue. The overall outcome is
        stored on the root order as ``fanout_status``/``fanout_error`` and
        returned, never raised.
        """
        result = FanOutResult(root_order_id=root_order_id)

        async with self.session_factory() as db:
            try:
                await self._walk(db, root_order_id, result)
            except CommerceError as e:
                logger.error(f"Fan-out for order {root_order_id} stopped: {e.message}")
                result.errors.append(e.message)
            except SQLAlchemyError as e:
                logger.exception(f"Fan-out for order {root_order_id} aborted: {e}")
                await db.rollback()
                result.created_order_ids.clear()
                result.errors.append(str(e))

            result.status = FanOutStatus.FAILED.value if result.errors else FanOutStatus.COMPLETED.value
            root = await db.get(Order, root_order_id)
            if root is not None:
                root.fanout_status = result.status
                root.fanout_error = "; ".join(result.errors) if result.errors else None
            await db.commit()

        logger.info(
            f"Fan-out for order {root_order_id}: {result.status}, "
            f"{len(result.created_order_ids)} upstream orders, depth {result.depth}"
        )
        return result

    async def _walk(self, db: AsyncSession, root_order_id: uuid.UUID, result: FanOutResult) -> None:
        catalog = CatalogService(db)

        root = await db.get(Order, root_order_id)
        if root is None:
            raise NotFoundError(f"Order {root_order_id} not found")

        frontier = [(root, await self._money_lines(db, root.cart_id))]
        while frontier:
            mappings = await catalog.get_source_mappings(
                line.product_id for _, lines in frontier for line in lines
            )
            if not mappings:
                return

            if result.depth >= self.max_depth:
                raise InternalError(
                    f"Fan-out exceeded maximum depth of {self.max_depth} hops",
                    {"root_order_id": str(root_order_id)},
                )
            result.depth += 1

            by_target: Dict[uuid.UUID, List[SharedProductMapping]] = defaultdict(list)
            for mapping in mappings:
                by_target[mapping.target_product_id].append(mapping)

            next_frontier = []
            for downstream, lines in frontier:
                groups = await self._group_by_supplier(catalog, downstream, lines, by_target)
                for supplier_org_id, items in groups.items():
                    try:
                        async with db.begin_nested():
                            order, new_lines = await self._create_upstream_order(
                                db, catalog, root, downstream, supplier_org_id, items
                            )
                    except (CommerceError, SQLAlchemyError) as e:
                        message = e.message if isinstance(e, CommerceError) else str(e)
                        logger.error(
                            f"Upstream order for org {supplier_org_id} "
                            f"(from order {downstream.id}) failed: {message}"
                        )
                        result.errors.append(f"org {supplier_org_id}: {message}")
                        continue

                    result.created_order_ids.append(order.id)
                    next_frontier.append((order, new_lines))
            frontier = next_frontier

    @staticmethod
    async def _money_lines(db: AsyncSession, cart_id: uuid.UUID) -> List[CartLine]:
        lines = await db.execute(
            select(CartLine)
            .where(CartLine.cart_id == cart_id, CartLine.product_id.is_not(None))
            .order_by(CartLine.created_at)
        )
        return list(lines.scalars().all())

    @staticmethod
    async def _group_by_supplier(
        catalog: CatalogService,
        downstream: Order,
        lines: List[CartLine],
        by_target: Dict[uuid.UUID, List[SharedProductMapping]],
    ) -> Dict[uuid.UUID, List[Tuple[CartLine, Product]]]:
        """Group the downstream lines by the organization owning each source product."""
        groups: Dict[uuid.UUID, List[Tuple[CartLine, Product]]] = defaultdict(list)
        for line in lines:
            for mapping in by_target.get(line.product_id, []):
                source = await catalog.get_product_any_org(mapping.source_product_id)
                if source is None:
                    logger.warning(f"Mapping {mapping.id} points at a missing product")
                    continue
                if source.organization_id == downstream.organization_id:
                    logger.warning(f"Mapping {mapping.id} stays inside org {source.organization_id}, skipped")
                    continue
                groups[source.organization_id].append((line, source))
        return groups

    async def _create_upstream_order(
        self,
        db: AsyncSession,
        catalog: CatalogService,
        root: Order,
        downstream: Order,
        supplier_org_id: uuid.UUID,
        items: List[Tuple[CartLine, Product]],
    ) -> Tuple[Order, List[CartLine]]:
        buyer = await db.get(Client, downstream.client_id)
        if buyer is None:
            raise NotFoundError(f"Client {downstream.client_id} not found")
        client = await self._find_or_create_client(db, supplier_org_id, buyer)

        cart = Cart(
            organization_id=supplier_org_id,
            client_id=client.id,
            country=downstream.country,
            channel=FANOUT_CHANNEL,
            status=False,
            lines=[],
        )
        merged: Dict[Tuple[uuid.UUID, Optional[uuid.UUID]], CartLine] = {}
        for line, source in items:
            variation_id, unit_price = await self._source_price(catalog, source, line, downstream.country)
            existing = merged.get((source.id, variation_id))
            if existing is not None:
                existing.quantity += line.quantity
                continue
            new_line = CartLine(
                product_id=source.id,
                variation_id=variation_id,
                quantity=line.quantity,
                unit_price=unit_price,
            )
            merged[(source.id, variation_id)] = new_line
            cart.lines.append(new_line)

        db.add(cart)
        await db.flush()
        cart.cart_hash = compute_cart_hash(cart.lines)
        cart.cart_updated_hash = cart.cart_hash

        order_key = await OrderSequenceService(db).next_number(supplier_org_id)
        subtotal = sum((l.line_total for l in cart.lines), ZERO)
        shipping = root.shipping_total or ZERO

        order = Order(
            organization_id=supplier_org_id,
            order_key=order_key,
            client_id=client.id,
            cart_id=cart.id,
            status=OrderStatus.OPEN.value,
            country=downstream.country,
            cart_hash=cart.cart_hash,
            subtotal=subtotal,
            shipping_total=shipping,
            discount_total=ZERO,
            total_amount=subtotal + shipping,
            points_redeemed=ZERO,
            payment_method=root.payment_method,
            shipping_service=root.shipping_service,
            shipping_method=root.shipping_method,
            address=root.address,
            order_meta=[{"event": "created_by_fanout", "from_order": str(downstream.id)}],
            parent_order_id=downstream.id,
            root_order_id=root.id,
            fanout_status=FanOutStatus.NONE.value,
        )
        db.add(order)
        await db.flush()
        logger.info(
            f"Created upstream order {order.order_number} in org {supplier_org_id} "
            f"from order {downstream.id}"
        )
        return order, list(cart.lines)

    @staticmethod
    async def _source_price(
        catalog: CatalogService,
        source: Product,
        line: CartLine,
        country: str,
    ) -> Tuple[Optional[uuid.UUID], Decimal]:
        """Supplier's own regular price for the mapped product or variation."""
        if source.is_variable:
            if line.variation_id is None:
                raise InvalidInputError(f"Line for variable source product {source.id} has no variation")
            variation_mapping = await catalog.get_variation_mapping(line.variation_id, source.id)
            if variation_mapping is None:
                raise NotFoundError(
                    f"No variation mapping for variation {line.variation_id} on product {source.id}"
                )
            variation = await catalog.get_variation(source.id, variation_mapping.source_variation_id)
            if variation is None:
                raise NotFoundError(f"Variation {variation_mapping.source_variation_id} not found")
            price = country_price(variation.regular_price, country)
            variation_id = variation.id
        else:
            price = country_price(source.regular_price, country)
            variation_id = None

        if price is None:
            raise NotFoundError(f"Product {source.id} has no regular price for {country}")
        return variation_id, price

    @staticmethod
    async def _find_or_create_client(db: AsyncSession, organization_id: uuid.UUID, buyer: Client) -> Client:
        """Match the buyer in the supplier org by user id, else by username."""
        if buyer.user_id:
            condition = Client.user_id == buyer.user_id
        else:
            condition = Client.username == buyer.username
        result = await db.execute(
            select(Client).where(Client.organization_id == organization_id, condition).limit(1)
        )
        client = result.scalar_one_or_none()
        if client is not None:
            return client

        client = Client(
            organization_id=organization_id,
            user_id=buyer.user_id,
            username=buyer.username,
            first_name=buyer.first_name,
            last_name=buyer.last_name,
            email=buyer.email,
            phone_number=buyer.phone_number,
            country=buyer.country,
        )
        db.add(client)
        await db.flush()
        logger.info(f"Created client {client.username} in org {organization_id} for fan-out")
        return client
