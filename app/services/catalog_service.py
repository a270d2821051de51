"""
Catalog lookups.

Read-only access to products, variations, affiliate products, levels,
clients, tier rules and the dropship mapping graph. No business logic.
"""
import uuid
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.affiliate import AffiliateLevel, AffiliateProduct
from app.models.client import Client
from app.models.product import Product, ProductVariation
from app.models.shared_product import SharedProductMapping, SharedVariationMapping
from app.models.tier_pricing import TierPricing


class CatalogService:
    """Fetch helpers scoped to an organization where the record is owned by one."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_product(self, organization_id: uuid.UUID, product_id: uuid.UUID) -> Optional[Product]:
        result = await self.db.execute(
            select(Product).where(
                Product.id == product_id,
                Product.organization_id == organization_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_product_any_org(self, product_id: uuid.UUID) -> Optional[Product]:
        """Fetch a product regardless of owner (upstream sources in the mapping graph)."""
        result = await self.db.execute(select(Product).where(Product.id == product_id))
        return result.scalar_one_or_none()

    async def get_variation(
        self,
        product_id: uuid.UUID,
        variation_id: uuid.UUID,
    ) -> Optional[ProductVariation]:
        result = await self.db.execute(
            select(ProductVariation).where(
                ProductVariation.id == variation_id,
                ProductVariation.product_id == product_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_affiliate_product(
        self,
        organization_id: uuid.UUID,
        affiliate_product_id: uuid.UUID,
    ) -> Optional[AffiliateProduct]:
        result = await self.db.execute(
            select(AffiliateProduct).where(
                AffiliateProduct.id == affiliate_product_id,
                AffiliateProduct.organization_id == organization_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_level(self, level_id: Optional[uuid.UUID]) -> Optional[AffiliateLevel]:
        if level_id is None:
            return None
        result = await self.db.execute(
            select(AffiliateLevel).where(AffiliateLevel.id == level_id)
        )
        return result.scalar_one_or_none()

    async def get_client(self, organization_id: uuid.UUID, client_id: uuid.UUID) -> Optional[Client]:
        result = await self.db.execute(
            select(Client).where(
                Client.id == client_id,
                Client.organization_id == organization_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_active_tier_rules(self, organization_id: uuid.UUID) -> List[TierPricing]:
        """Active rules with products, steps and targeted clients, newest first."""
        result = await self.db.execute(
            select(TierPricing)
            .where(
                TierPricing.organization_id == organization_id,
                TierPricing.is_active == True,  # noqa: E712
            )
            .order_by(TierPricing.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_source_mappings(self, product_ids: Iterable[uuid.UUID]) -> List[SharedProductMapping]:
        """Every outgoing edge from the given target products."""
        ids = list({pid for pid in product_ids if pid is not None})
        if not ids:
            return []
        result = await self.db.execute(
            select(SharedProductMapping)
            .where(SharedProductMapping.target_product_id.in_(ids))
            .order_by(SharedProductMapping.created_at)
        )
        return list(result.scalars().all())

    async def get_variation_mapping(
        self,
        target_variation_id: uuid.UUID,
        source_product_id: Optional[uuid.UUID] = None,
    ) -> Optional[SharedVariationMapping]:
        query = select(SharedVariationMapping).where(
            SharedVariationMapping.target_variation_id == target_variation_id
        )
        if source_product_id is not None:
            query = query.where(SharedVariationMapping.source_product_id == source_product_id)
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none()
