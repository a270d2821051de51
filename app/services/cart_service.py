"""
Cart mutation.

Each call is one short atomic step: the line price is captured from the
price resolver, affiliate lines debit points immediately, tier rules are
re-evaluated over the whole rule group, and the cart content hash is
recomputed. No lock is held across requests; concurrent edits of the same
line are last-write-wins.
"""
import hashlib
import json
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import InvalidInputError, NotFoundError, OutOfStockError
from app.models.affiliate import PointsAction
from app.models.cart import Cart, CartLine
from app.models.client import Client
from app.services.affiliate_points_service import AffiliatePointsService
from app.services.cache_service import CacheService
from app.services.catalog_service import CatalogService
from app.services.inventory_service import InventoryService, StockDemand
from app.services.pricing_service import PricingService
from app.services.tier_pricing_service import find_applicable_rule, group_quantity, price_for_quantity

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _line_sort_key(line: CartLine):
    created = line.created_at.replace(tzinfo=None) if line.created_at else datetime.max
    return created, str(line.id)


def compute_cart_hash(lines: Iterable[CartLine]) -> str:
    """SHA-256 over the canonical JSON of ordered (product, variation, quantity, unit price)."""
    payload = [
        {
            "product_id": str(line.catalog_id),
            "variation_id": str(line.variation_id) if line.variation_id else None,
            "affiliate": line.is_affiliate,
            "quantity": line.quantity,
            "unit_price": str(Decimal(line.unit_price).quantize(CENT)),
        }
        for line in sorted(lines, key=_line_sort_key)
    ]
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class CartService:
    """Cart and cart-line operations for one organization."""

    def __init__(self, db: AsyncSession, cache: Optional[CacheService] = None):
        self.db = db
        self.catalog = CatalogService(db)
        self.pricing = PricingService(db, cache=cache)
        self.points = AffiliatePointsService(db)
        self.inventory = InventoryService(db)

    # ==================== Cart ====================

    async def create_cart(
        self,
        organization_id: uuid.UUID,
        client_id: uuid.UUID,
        country: str,
        channel: str = "store",
    ) -> Cart:
        await self._get_client(organization_id, client_id)
        if not country or not country.strip():
            raise InvalidInputError("Country is required")

        cart = Cart(
            organization_id=organization_id,
            client_id=client_id,
            country=country.strip().upper(),
            channel=channel,
            status=True,
            lines=[],
        )
        cart.cart_updated_hash = compute_cart_hash([])
        self.db.add(cart)
        await self.db.flush()
        logger.info(f"Created cart {cart.id} for client {client_id} in org {organization_id}")
        return cart

    async def get_cart(self, organization_id: uuid.UUID, cart_id: uuid.UUID, lock: bool = False) -> Cart:
        query = (
            select(Cart)
            .options(selectinload(Cart.lines))
            .where(Cart.id == cart_id, Cart.organization_id == organization_id)
        )
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        cart = result.scalar_one_or_none()
        if cart is None:
            raise NotFoundError(f"Cart {cart_id} not found")
        return cart

    # ==================== Lines ====================

    async def add_product(
        self,
        organization_id: uuid.UUID,
        cart_id: uuid.UUID,
        product_id: uuid.UUID,
        variation_id: Optional[uuid.UUID],
        quantity: int,
    ) -> Cart:
        """
        Add a product or merge into the existing line.

        Raises:
            PermissionDeniedError: affiliate level too low (nothing is written)
            InsufficientBalanceError: points do not cover the line (nothing is written)
            OutOfStockError: managed stock without backorders cannot cover the line
        """
        if quantity < 1:
            raise InvalidInputError("Quantity must be at least 1")

        cart = await self._get_open_cart(organization_id, cart_id)
        client = await self._get_client(organization_id, cart.client_id)
        quote = await self.pricing.resolve_price(
            organization_id, product_id, variation_id, cart.country, client.level_id
        )
        line = self._find_line(cart, product_id, variation_id)

        if quote.is_points:
            unit_points = Decimal(line.unit_price) if line else quote.unit_price
            await self.points.redeem(
                client.id,
                organization_id,
                unit_points * quantity,
                action=PointsAction.REDEEM.value,
                description="add to cart",
            )
            if line is None:
                line = CartLine(
                    affiliate_product_id=product_id,
                    variation_id=variation_id,
                    quantity=quantity,
                    unit_price=quote.unit_price,
                )
                cart.lines.append(line)
            else:
                line.quantity += quantity
            await self.inventory.adjust_stock(
                organization_id, product_id, variation_id, cart.country, -quantity
            )
        else:
            new_quantity = quantity + (line.quantity if line else 0)
            await self._guard_stock(organization_id, product_id, variation_id, cart.country, new_quantity)
            if line is None:
                line = CartLine(
                    product_id=product_id,
                    variation_id=variation_id,
                    quantity=quantity,
                    unit_price=quote.unit_price,
                )
                cart.lines.append(line)
            else:
                line.quantity = new_quantity
                line.unit_price = quote.unit_price
            await self.reprice_tier_groups(organization_id, cart, client)

        await self._refresh_hash(cart)
        logger.info(f"Added {quantity} x {product_id} to cart {cart.id}")
        return cart

    async def update_product(
        self,
        organization_id: uuid.UUID,
        cart_id: uuid.UUID,
        product_id: uuid.UUID,
        variation_id: Optional[uuid.UUID],
        quantity: int,
    ) -> Cart:
        """Set a line's quantity. Zero removes the line."""
        if quantity < 0:
            raise InvalidInputError("Quantity cannot be negative")
        if quantity == 0:
            return await self.remove_product(organization_id, cart_id, product_id, variation_id)

        cart = await self._get_open_cart(organization_id, cart_id)
        client = await self._get_client(organization_id, cart.client_id)
        line = self._require_line(cart, product_id, variation_id)
        delta = quantity - line.quantity
        if delta == 0:
            return cart

        if line.is_affiliate:
            # Level may have dropped since the line was added
            await self.pricing.resolve_price(
                organization_id, product_id, variation_id, cart.country, client.level_id
            )
            points = Decimal(line.unit_price) * abs(delta)
            if delta > 0:
                await self.points.redeem(
                    client.id, organization_id, points,
                    action=PointsAction.REDEEM.value, description="update cart",
                )
            else:
                await self.points.refund(
                    client.id, organization_id, points,
                    action=PointsAction.REFUND.value, description="update cart",
                )
            line.quantity = quantity
            await self.inventory.adjust_stock(
                organization_id, product_id, variation_id, cart.country, -delta
            )
        else:
            if delta > 0:
                await self._guard_stock(organization_id, product_id, variation_id, cart.country, quantity)
            line.quantity = quantity
            await self.reprice_tier_groups(organization_id, cart, client)

        await self._refresh_hash(cart)
        logger.info(f"Set quantity of {product_id} in cart {cart.id} to {quantity}")
        return cart

    async def remove_product(
        self,
        organization_id: uuid.UUID,
        cart_id: uuid.UUID,
        product_id: uuid.UUID,
        variation_id: Optional[uuid.UUID],
    ) -> Cart:
        """Delete a line; affiliate lines get their points and stock back."""
        cart = await self._get_open_cart(organization_id, cart_id)
        client = await self._get_client(organization_id, cart.client_id)
        line = self._require_line(cart, product_id, variation_id)

        if line.is_affiliate:
            await self.points.refund(
                client.id,
                organization_id,
                Decimal(line.unit_price) * line.quantity,
                action=PointsAction.REFUND.value,
                description="remove from cart",
            )
            await self.inventory.adjust_stock(
                organization_id, product_id, variation_id, cart.country, line.quantity
            )

        cart.lines.remove(line)
        await self.db.flush()
        if not line.is_affiliate:
            await self.reprice_tier_groups(organization_id, cart, client)

        await self._refresh_hash(cart)
        logger.info(f"Removed {product_id} from cart {cart.id}")
        return cart

    # ==================== Tier re-evaluation ====================

    async def reprice_tier_groups(
        self,
        organization_id: uuid.UUID,
        cart: Cart,
        client: Client,
        fresh: bool = False,
    ) -> None:
        """
        Refresh the unit price of every normal line covered by a tier rule.

        The step is chosen on the total quantity of all cart lines in the
        rule's product set; lines with no matching step fall back to their
        own base price. Lines outside every rule keep their captured price
        unless ``fresh`` is set, in which case they are re-resolved too.
        """
        rules = await self.catalog.get_active_tier_rules(organization_id)
        resolve = self.pricing.resolve_fresh if fresh else self.pricing.resolve_price

        for line in cart.lines:
            if line.is_affiliate:
                continue
            rule = find_applicable_rule(rules, cart.country, line.product_id, line.variation_id, client.id)
            if rule is None and not fresh:
                continue

            step_price = None
            if rule is not None:
                steps = sorted(rule.steps, key=lambda s: s.from_units)
                step_price = price_for_quantity(steps, group_quantity(rule, cart.lines))

            if step_price is not None:
                line.unit_price = step_price
            else:
                quote = await resolve(
                    organization_id, line.product_id, line.variation_id, cart.country, client.level_id
                )
                line.unit_price = quote.unit_price

    # ==================== Helpers ====================

    async def _get_open_cart(self, organization_id: uuid.UUID, cart_id: uuid.UUID) -> Cart:
        cart = await self.get_cart(organization_id, cart_id, lock=True)
        if not cart.status:
            raise InvalidInputError(f"Cart {cart_id} is closed")
        return cart

    async def _get_client(self, organization_id: uuid.UUID, client_id: uuid.UUID) -> Client:
        client = await self.catalog.get_client(organization_id, client_id)
        if client is None:
            raise NotFoundError(f"Client {client_id} not found")
        return client

    @staticmethod
    def _find_line(cart: Cart, product_id: uuid.UUID, variation_id: Optional[uuid.UUID]) -> Optional[CartLine]:
        for line in cart.lines:
            if line.catalog_id == product_id and line.variation_id == variation_id:
                return line
        return None

    def _require_line(self, cart: Cart, product_id: uuid.UUID, variation_id: Optional[uuid.UUID]) -> CartLine:
        line = self._find_line(cart, product_id, variation_id)
        if line is None:
            raise NotFoundError(f"Product {product_id} is not in cart {cart.id}")
        return line

    async def _guard_stock(
        self,
        organization_id: uuid.UUID,
        product_id: uuid.UUID,
        variation_id: Optional[uuid.UUID],
        country: str,
        quantity: int,
    ) -> None:
        failures = await self.inventory.check_availability(
            organization_id,
            [StockDemand(product_id=product_id, variation_id=variation_id, country=country, quantity=quantity)],
        )
        if failures:
            raise OutOfStockError(failures)

    async def _refresh_hash(self, cart: Cart) -> None:
        await self.db.flush()
        cart.cart_updated_hash = compute_cart_hash(cart.lines)
        await self.db.flush()
