"""
Volume tier pricing.

A rule matches a line when its country set contains the line's country and
its product set contains the line's product or variation. Targeted rules
(non-empty client list) win over general ones; rules are supplied newest
first so the most recent match wins. Steps are inclusive unit ranges and
the first matching step is authoritative.

The module-level functions are pure and work on any object exposing the
``TierPricing`` attributes.
"""
import logging
import uuid
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidInputError, NotFoundError
from app.models.tier_pricing import TierPricing, TierPricingProduct, TierPricingStep, TierPricingClient
from app.schemas.tier_pricing import TierPricingCreate, TierPricingUpdate, TierStepInput
from app.services.catalog_service import CatalogService

logger = logging.getLogger(__name__)


# ==================== Pure rule evaluation ====================

def rule_matches(rule, country: str, product_id, variation_id=None) -> bool:
    """True when the rule is active, covers the country and the product or variation."""
    if not rule.is_active:
        return False
    countries = {c.upper() for c in (rule.countries or [])}
    if country.upper() not in countries:
        return False
    covered = rule.product_ids
    return product_id in covered or (variation_id is not None and variation_id in covered)


def find_applicable_rule(
    rules: Sequence,
    country: str,
    product_id,
    variation_id=None,
    client_id=None,
):
    """
    Pick the rule for a line: first targeted match for the client, else the
    first general match, else None.
    """
    general = None
    for rule in rules:
        if not rule_matches(rule, country, product_id, variation_id):
            continue
        targeted_ids = rule.targeted_client_ids
        if targeted_ids:
            if client_id is not None and client_id in targeted_ids:
                return rule
        elif general is None:
            general = rule
    return general


def applicable_steps(rules: Sequence, country: str, product_id, variation_id=None, client_id=None) -> list:
    rule = find_applicable_rule(rules, country, product_id, variation_id, client_id)
    if rule is None:
        return []
    return sorted(rule.steps, key=lambda s: s.from_units)


def price_for_quantity(steps: Iterable, quantity: int) -> Optional[Decimal]:
    """Inclusive first-match scan; None means fall back to the base price."""
    for step in steps:
        if step.from_units <= quantity <= step.to_units:
            return Decimal(step.price)
    return None


def line_in_rule(rule, product_id, variation_id=None) -> bool:
    covered = rule.product_ids
    return product_id in covered or (variation_id is not None and variation_id in covered)


def group_quantity(rule, lines: Iterable) -> int:
    """Total quantity over every non-affiliate line belonging to the rule's product set."""
    return sum(
        line.quantity
        for line in lines
        if line.product_id is not None and line_in_rule(rule, line.product_id, line.variation_id)
    )


def validate_steps(steps: Sequence[TierStepInput]) -> None:
    """Steps need from <= to and must not overlap."""
    ordered = sorted(steps, key=lambda s: s.from_units)
    previous_to = None
    for step in ordered:
        if step.from_units > step.to_units:
            raise InvalidInputError(
                f"Step {step.from_units}-{step.to_units} has from_units greater than to_units"
            )
        if previous_to is not None and step.from_units <= previous_to:
            raise InvalidInputError(
                f"Step {step.from_units}-{step.to_units} overlaps the previous step ending at {previous_to}"
            )
        previous_to = step.to_units


class TierPricingService:
    """Manage tier rules and evaluate them for an organization."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.catalog = CatalogService(db)

    # ==================== Evaluation ====================

    async def tier_price(
        self,
        organization_id: uuid.UUID,
        country: str,
        product_id: uuid.UUID,
        variation_id: Optional[uuid.UUID],
        client_id: Optional[uuid.UUID],
        quantity: int,
    ) -> Optional[Decimal]:
        """Step price for a quantity, or None when no rule/step applies."""
        rules = await self.catalog.get_active_tier_rules(organization_id)
        steps = applicable_steps(rules, country, product_id, variation_id, client_id)
        return price_for_quantity(steps, quantity)

    # ==================== CRUD ====================

    async def list_rules(self, organization_id: uuid.UUID, active_only: bool = False) -> List[TierPricing]:
        query = select(TierPricing).where(TierPricing.organization_id == organization_id)
        if active_only:
            query = query.where(TierPricing.is_active == True)  # noqa: E712
        result = await self.db.execute(query.order_by(TierPricing.created_at.desc()))
        return list(result.scalars().all())

    async def get_rule(self, organization_id: uuid.UUID, rule_id: uuid.UUID) -> TierPricing:
        result = await self.db.execute(
            select(TierPricing).where(
                TierPricing.id == rule_id,
                TierPricing.organization_id == organization_id,
            )
        )
        rule = result.scalar_one_or_none()
        if rule is None:
            raise NotFoundError(f"Tier pricing rule {rule_id} not found")
        return rule

    async def create_rule(self, organization_id: uuid.UUID, data: TierPricingCreate) -> TierPricing:
        validate_steps(data.steps)
        await self._check_products(organization_id, data.products)
        await self._check_clients(organization_id, data.clients)

        rule = TierPricing(
            organization_id=organization_id,
            name=data.name,
            countries=self._normalize_countries(data.countries),
            pricing_type=data.pricing_type,
            is_active=data.is_active,
            products=[
                TierPricingProduct(product_id=p.product_id, variation_id=p.variation_id)
                for p in data.products
            ],
            steps=[
                TierPricingStep(from_units=s.from_units, to_units=s.to_units, price=s.price)
                for s in data.steps
            ],
            clients=[TierPricingClient(client_id=client_id) for client_id in dict.fromkeys(data.clients)],
        )
        self.db.add(rule)
        await self.db.flush()

        logger.info(
            f"Created tier rule '{rule.name}' for org {organization_id} "
            f"({len(rule.steps)} steps, {len(rule.clients)} targeted clients)"
        )
        return rule

    async def update_rule(
        self,
        organization_id: uuid.UUID,
        rule_id: uuid.UUID,
        data: TierPricingUpdate,
    ) -> TierPricing:
        rule = await self.get_rule(organization_id, rule_id)

        if data.name is not None:
            rule.name = data.name
        if data.countries is not None:
            rule.countries = self._normalize_countries(data.countries)
        if data.pricing_type is not None:
            rule.pricing_type = data.pricing_type
        if data.is_active is not None:
            rule.is_active = data.is_active
        if data.steps is not None:
            validate_steps(data.steps)
            rule.steps = [
                TierPricingStep(from_units=s.from_units, to_units=s.to_units, price=s.price)
                for s in data.steps
            ]
        if data.products is not None:
            await self._check_products(organization_id, data.products)
            rule.products = [
                TierPricingProduct(product_id=p.product_id, variation_id=p.variation_id)
                for p in data.products
            ]
        if data.clients is not None:
            await self._check_clients(organization_id, data.clients)
            rule.clients = [TierPricingClient(client_id=client_id) for client_id in dict.fromkeys(data.clients)]

        await self.db.flush()
        logger.info(f"Updated tier rule {rule.id} for org {organization_id}")
        return rule

    async def set_active(self, organization_id: uuid.UUID, rule_id: uuid.UUID, is_active: bool) -> TierPricing:
        rule = await self.get_rule(organization_id, rule_id)
        rule.is_active = is_active
        await self.db.flush()
        logger.info(f"Tier rule {rule.id} {'activated' if is_active else 'deactivated'}")
        return rule

    async def delete_rule(self, organization_id: uuid.UUID, rule_id: uuid.UUID) -> None:
        rule = await self.get_rule(organization_id, rule_id)
        await self.db.delete(rule)
        await self.db.flush()
        logger.info(f"Deleted tier rule {rule_id} for org {organization_id}")

    # ==================== Helpers ====================

    @staticmethod
    def _normalize_countries(countries: Iterable[str]) -> list:
        normalized = [c.strip().upper() for c in countries if c and c.strip()]
        if not normalized:
            raise InvalidInputError("At least one country is required")
        return list(dict.fromkeys(normalized))

    async def _check_products(self, organization_id: uuid.UUID, products) -> None:
        for item in products:
            product = await self.catalog.get_product(organization_id, item.product_id)
            if product is None:
                raise NotFoundError(f"Product {item.product_id} not found")
            if item.variation_id is not None:
                variation = await self.catalog.get_variation(item.product_id, item.variation_id)
                if variation is None:
                    raise NotFoundError(
                        f"Variation {item.variation_id} does not belong to product {item.product_id}"
                    )

    async def _check_clients(self, organization_id: uuid.UUID, client_ids) -> None:
        for client_id in client_ids:
            if await self.catalog.get_client(organization_id, client_id) is None:
                raise NotFoundError(f"Client {client_id} not found")
