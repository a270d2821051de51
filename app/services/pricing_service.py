"""
Price resolution for cart lines.

Normal products are priced in money from per-country price tables (sale
price wins when present and non-zero). Affiliate products are priced in
points from per-(level, country) tables and may require a minimum level.

Resolved prices are cached per organization for ``PRICE_CACHE_TTL`` seconds
and never invalidated early. Failures are never cached.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import InvalidInputError, NotFoundError, PermissionDeniedError
from app.models.affiliate import AffiliateProduct, DEFAULT_LEVEL_KEY
from app.models.product import Product, country_price
from app.services.cache_service import CacheService, get_cache
from app.services.catalog_service import CatalogService

logger = logging.getLogger(__name__)


@dataclass
class PriceQuote:
    """Unit price of a catalog entry; ``is_points`` marks affiliate pricing."""
    unit_price: Decimal
    is_points: bool = False

    def to_cache(self) -> dict:
        return {"unit_price": str(self.unit_price), "is_points": self.is_points}

    @classmethod
    def from_cache(cls, data: dict) -> "PriceQuote":
        return cls(unit_price=Decimal(data["unit_price"]), is_points=bool(data["is_points"]))


def pick_money_price(regular: Optional[dict], sale: Optional[dict], country: str) -> Optional[Decimal]:
    """Sale price for the country if present and non-zero, else the regular price."""
    sale_value = country_price(sale, country)
    if sale_value is not None and sale_value != 0:
        return sale_value
    return country_price(regular, country)


def _points_entry(table: Optional[dict], level_key: Optional[str], country: str) -> Optional[Decimal]:
    if not table or not level_key:
        return None
    by_country = table.get(level_key)
    if not isinstance(by_country, dict):
        return None
    value = by_country.get(country)
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def pick_points_price(
    affiliate_product: AffiliateProduct,
    level_id: Optional[uuid.UUID],
    country: str,
) -> Optional[Decimal]:
    """
    Points price lookup order: sale at the client's level, sale at the
    default level, regular at the client's level, regular at the default level.
    """
    level_key = str(level_id) if level_id else None
    candidates = (
        (affiliate_product.sale_points, level_key),
        (affiliate_product.sale_points, DEFAULT_LEVEL_KEY),
        (affiliate_product.regular_points, level_key),
        (affiliate_product.regular_points, DEFAULT_LEVEL_KEY),
    )
    for index, (table, key) in enumerate(candidates):
        value = _points_entry(table, key, country)
        if value is None:
            continue
        # A zero sale entry does not override the regular points
        if index < 2 and value == 0:
            continue
        return value
    return None


class PricingService:
    """
    Resolve unit prices.

    Usage:
        pricing = PricingService(db)
        quote = await pricing.resolve_price(org_id, product_id, None, "US", level_id)
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[CacheService] = None,
        use_cache: Optional[bool] = None,
    ):
        self.db = db
        self.catalog = CatalogService(db)
        self.cache = cache or get_cache()
        self.use_cache = settings.CACHE_ENABLED if use_cache is None else use_cache

    async def resolve_price(
        self,
        organization_id: uuid.UUID,
        product_id: uuid.UUID,
        variation_id: Optional[uuid.UUID],
        country: str,
        level_id: Optional[uuid.UUID] = None,
    ) -> PriceQuote:
        """
        Resolve a unit price through the bounded-staleness cache.

        Raises:
            InvalidInputError: variable product without a variation
            NotFoundError: unknown product/variation or no price for the country
            PermissionDeniedError: affiliate level below the product minimum
        """
        country = self._normalize_country(country)
        key = CacheService.price_key(product_id, variation_id, country, level_id)

        if self.use_cache:
            cached = await self.cache.get_price(str(organization_id), key)
            if cached:
                return PriceQuote.from_cache(cached)

        quote = await self.resolve_fresh(organization_id, product_id, variation_id, country, level_id)

        if self.use_cache:
            await self.cache.set_price(str(organization_id), key, quote.to_cache())
        return quote

    async def resolve_fresh(
        self,
        organization_id: uuid.UUID,
        product_id: uuid.UUID,
        variation_id: Optional[uuid.UUID],
        country: str,
        level_id: Optional[uuid.UUID] = None,
    ) -> PriceQuote:
        """Resolve straight from the catalog, bypassing the cache."""
        country = self._normalize_country(country)

        product = await self.catalog.get_product(organization_id, product_id)
        if product is not None:
            return await self._money_quote(product, variation_id, country)

        affiliate_product = await self.catalog.get_affiliate_product(organization_id, product_id)
        if affiliate_product is not None:
            await self.check_level(affiliate_product, level_id)
            points = pick_points_price(affiliate_product, level_id, country)
            if points is None:
                raise NotFoundError(
                    f"No points price for affiliate product {product_id} in {country}"
                )
            return PriceQuote(unit_price=points, is_points=True)

        raise NotFoundError(f"Product {product_id} not found")

    async def check_level(
        self,
        affiliate_product: AffiliateProduct,
        level_id: Optional[uuid.UUID],
    ) -> None:
        """Raise PermissionDeniedError when the client's level is below the product minimum."""
        if affiliate_product.min_level_id is None:
            return
        min_level = await self.catalog.get_level(affiliate_product.min_level_id)
        if min_level is None:
            return

        client_level = await self.catalog.get_level(level_id)
        if client_level is None or client_level.required_points < min_level.required_points:
            logger.info(
                f"Level gate rejected affiliate product {affiliate_product.id}: "
                f"requires {min_level.name} ({min_level.required_points})"
            )
            raise PermissionDeniedError(
                "Customer's level too low",
                {"required_level_id": str(min_level.id), "required_points": str(min_level.required_points)},
            )

    async def _money_quote(
        self,
        product: Product,
        variation_id: Optional[uuid.UUID],
        country: str,
    ) -> PriceQuote:
        if product.is_variable:
            if variation_id is None:
                raise InvalidInputError(f"Variation is required for variable product {product.id}")
            variation = await self.catalog.get_variation(product.id, variation_id)
            if variation is None:
                raise NotFoundError(f"Variation {variation_id} does not belong to product {product.id}")
            price = pick_money_price(variation.regular_price, variation.sale_price, country)
        else:
            price = pick_money_price(product.regular_price, product.sale_price, country)

        if price is None:
            raise NotFoundError(f"No price for product {product.id} in {country}")
        return PriceQuote(unit_price=price, is_points=False)

    @staticmethod
    def _normalize_country(country: str) -> str:
        if not country or not country.strip():
            raise InvalidInputError("Country is required")
        return country.strip().upper()
