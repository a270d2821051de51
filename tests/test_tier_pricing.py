"""
Tests — Tier Pricing
=====================
Rule selection, inclusive steps, step validation and group quantities
re-evaluated by cart mutations.
"""

import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.core.exceptions import InvalidInputError, NotFoundError
from app.schemas.tier_pricing import TierPricingCreate, TierPricingUpdate, TierStepInput
from app.services.cart_service import CartService
from app.services.tier_pricing_service import (
    TierPricingService,
    applicable_steps,
    find_applicable_rule,
    group_quantity,
    price_for_quantity,
    rule_matches,
    validate_steps,
)


ORG = uuid.UUID("00000000-0000-0000-0000-0000000000a2")
PRODUCT = uuid.uuid4()
VARIATION = uuid.uuid4()
CLIENT = uuid.uuid4()
OTHER_CLIENT = uuid.uuid4()


def _rule(name, product_ids=(PRODUCT,), countries=("US",), clients=(), is_active=True, steps=()):
    return SimpleNamespace(
        name=name,
        is_active=is_active,
        countries=list(countries),
        product_ids=set(product_ids),
        targeted_client_ids=set(clients),
        steps=[SimpleNamespace(from_units=lo, to_units=hi, price=Decimal(p)) for lo, hi, p in steps],
    )


class TestRuleSelection:
    def test_matches_country_case_insensitively(self):
        assert rule_matches(_rule("r"), "us", PRODUCT)

    def test_inactive_rule_never_matches(self):
        assert not rule_matches(_rule("r", is_active=False), "US", PRODUCT)

    def test_other_country_does_not_match(self):
        assert not rule_matches(_rule("r"), "DE", PRODUCT)

    def test_variation_id_in_product_set(self):
        rule = _rule("r", product_ids=(VARIATION,))
        assert rule_matches(rule, "US", uuid.uuid4(), VARIATION)

    def test_targeted_rule_beats_general(self):
        general = _rule("general")
        targeted = _rule("targeted", clients=(CLIENT,))
        assert find_applicable_rule([general, targeted], "US", PRODUCT, None, CLIENT).name == "targeted"

    def test_targeted_rule_ignored_for_other_clients(self):
        general = _rule("general")
        targeted = _rule("targeted", clients=(CLIENT,))
        assert find_applicable_rule([targeted, general], "US", PRODUCT, None, OTHER_CLIENT).name == "general"
        assert find_applicable_rule([targeted], "US", PRODUCT, None, None) is None

    def test_newest_general_rule_wins(self):
        newest = _rule("newest")
        older = _rule("older")
        assert find_applicable_rule([newest, older], "US", PRODUCT).name == "newest"


class TestSteps:
    STEPS = _rule("r", steps=[(1, 4, "10.00"), (5, 9, "8.00"), (10, 20, "6.00")]).steps

    @pytest.mark.parametrize("quantity,expected", [
        (1, Decimal("10.00")),
        (4, Decimal("10.00")),
        (5, Decimal("8.00")),
        (9, Decimal("8.00")),
        (10, Decimal("6.00")),
        (20, Decimal("6.00")),
    ])
    def test_boundaries_are_inclusive(self, quantity, expected):
        assert price_for_quantity(self.STEPS, quantity) == expected

    def test_quantity_outside_every_step(self):
        assert price_for_quantity(self.STEPS, 21) is None

    def test_applicable_steps_sorted_from_chosen_rule(self):
        rule = _rule("r", steps=[(5, 9, "8.00"), (1, 4, "10.00")])
        steps = applicable_steps([rule], "US", PRODUCT)
        assert [s.from_units for s in steps] == [1, 5]
        assert applicable_steps([rule], "DE", PRODUCT) == []
        assert price_for_quantity(applicable_steps([rule], "DE", PRODUCT), 5) is None

    def test_overlapping_steps_rejected(self):
        with pytest.raises(InvalidInputError):
            validate_steps([
                TierStepInput(from_units=1, to_units=5, price=Decimal("10")),
                TierStepInput(from_units=5, to_units=9, price=Decimal("8")),
            ])

    def test_inverted_step_rejected(self):
        with pytest.raises(InvalidInputError):
            validate_steps([TierStepInput(from_units=9, to_units=5, price=Decimal("8"))])

    def test_adjacent_steps_accepted(self):
        validate_steps([
            TierStepInput(from_units=5, to_units=9, price=Decimal("8")),
            TierStepInput(from_units=1, to_units=4, price=Decimal("10")),
        ])

    def test_group_quantity_skips_affiliate_and_foreign_lines(self):
        rule = _rule("r", product_ids=(PRODUCT,))
        lines = [
            SimpleNamespace(product_id=PRODUCT, variation_id=None, quantity=3),
            SimpleNamespace(product_id=uuid.uuid4(), variation_id=None, quantity=7),
            SimpleNamespace(product_id=None, variation_id=None, quantity=2),
        ]
        assert group_quantity(rule, lines) == 3


class TestRuleManagement:
    async def test_create_rule_with_legacy_customers_field(self, db, seed):
        product = await seed.product(ORG, prices={"US": "10.00"})
        client = await seed.client(ORG)
        data = TierPricingCreate.model_validate({
            "name": "Wholesale",
            "countries": ["us"],
            "products": [{"product_id": str(product.id)}],
            "steps": [{"from_units": 5, "to_units": 12, "price": "8.00"}],
            "customers": [str(client.id)],
        })

        rule = await TierPricingService(db).create_rule(ORG, data)
        assert rule.countries == ["US"]
        assert rule.targeted_client_ids == {client.id}

    async def test_unknown_product_rejected(self, db):
        data = TierPricingCreate(
            name="Wholesale",
            countries=["US"],
            products=[{"product_id": uuid.uuid4()}],
            steps=[{"from_units": 1, "to_units": 5, "price": "8.00"}],
        )
        with pytest.raises(NotFoundError):
            await TierPricingService(db).create_rule(ORG, data)

    async def test_unknown_client_rejected(self, db, seed):
        product = await seed.product(ORG, prices={"US": "10.00"})
        data = TierPricingCreate(
            name="Wholesale",
            countries=["US"],
            products=[{"product_id": product.id}],
            steps=[{"from_units": 1, "to_units": 5, "price": "8.00"}],
            clients=[uuid.uuid4()],
        )
        with pytest.raises(NotFoundError):
            await TierPricingService(db).create_rule(ORG, data)

    async def test_tier_price_lookup(self, db, seed):
        product = await seed.product(ORG, prices={"US": "10.00"})
        await seed.tier_rule(ORG, [product], [(5, 12, "8.00")])
        service = TierPricingService(db)

        assert await service.tier_price(ORG, "US", product.id, None, None, 6) == Decimal("8.00")
        assert await service.tier_price(ORG, "US", product.id, None, None, 2) is None
        assert await service.tier_price(ORG, "DE", product.id, None, None, 6) is None

    async def test_deactivated_rule_is_skipped(self, db, seed):
        product = await seed.product(ORG, prices={"US": "10.00"})
        rule = await seed.tier_rule(ORG, [product], [(1, 12, "8.00")])
        service = TierPricingService(db)

        await service.set_active(ORG, rule.id, False)
        assert await service.tier_price(ORG, "US", product.id, None, None, 6) is None

    async def test_update_replaces_steps(self, db, seed):
        product = await seed.product(ORG, prices={"US": "10.00"})
        rule = await seed.tier_rule(ORG, [product], [(1, 12, "8.00")])
        service = TierPricingService(db)

        await service.update_rule(ORG, rule.id, TierPricingUpdate(
            countries=["de"],
            steps=[{"from_units": 1, "to_units": 3, "price": "9.50"}],
        ))

        assert await service.tier_price(ORG, "DE", product.id, None, None, 2) == Decimal("9.50")
        assert await service.tier_price(ORG, "US", product.id, None, None, 2) is None

    async def test_update_rejects_overlapping_steps(self, db, seed):
        product = await seed.product(ORG, prices={"US": "10.00"})
        rule = await seed.tier_rule(ORG, [product], [(1, 12, "8.00")])

        with pytest.raises(InvalidInputError):
            await TierPricingService(db).update_rule(ORG, rule.id, TierPricingUpdate(
                steps=[
                    {"from_units": 1, "to_units": 6, "price": "9.00"},
                    {"from_units": 6, "to_units": 9, "price": "8.00"},
                ],
            ))

    async def test_delete_rule(self, db, seed):
        product = await seed.product(ORG, prices={"US": "10.00"})
        rule = await seed.tier_rule(ORG, [product], [(1, 12, "8.00")])
        rule_id = rule.id
        service = TierPricingService(db)

        await service.delete_rule(ORG, rule_id)

        assert await service.list_rules(ORG) == []
        with pytest.raises(NotFoundError):
            await service.get_rule(ORG, rule_id)


class TestCartTierRepricing:
    async def test_step_applies_as_quantity_grows(self, db, seed, cache):
        product = await seed.product(ORG, prices={"US": "10.00"})
        client = await seed.client(ORG)
        await seed.tier_rule(ORG, [product], [(5, 12, "8.00"), (13, 50, "7.00")])
        carts = CartService(db, cache=cache)
        cart = await carts.create_cart(ORG, client.id, "US")

        cart = await carts.add_product(ORG, cart.id, product.id, None, 3)
        assert cart.lines[0].unit_price == Decimal("10.00")

        cart = await carts.update_product(ORG, cart.id, product.id, None, 5)
        assert cart.lines[0].unit_price == Decimal("8.00")

        cart = await carts.update_product(ORG, cart.id, product.id, None, 12)
        assert cart.lines[0].unit_price == Decimal("8.00")

        cart = await carts.update_product(ORG, cart.id, product.id, None, 13)
        assert cart.lines[0].unit_price == Decimal("7.00")

    async def test_group_quantity_spans_products(self, db, seed, cache):
        shirt = await seed.product(ORG, prices={"US": "10.00"}, name="Shirt")
        cap = await seed.product(ORG, prices={"US": "6.00"}, name="Cap")
        client = await seed.client(ORG)
        await seed.tier_rule(ORG, [shirt, cap], [(5, 20, "5.00")])
        carts = CartService(db, cache=cache)
        cart = await carts.create_cart(ORG, client.id, "US")

        await carts.add_product(ORG, cart.id, shirt.id, None, 3)
        cart = await carts.add_product(ORG, cart.id, cap.id, None, 2)
        assert {line.unit_price for line in cart.lines} == {Decimal("5.00")}

        cart = await carts.remove_product(ORG, cart.id, cap.id, None)
        assert cart.lines[0].unit_price == Decimal("10.00")

    async def test_targeted_rule_only_for_its_client(self, db, seed, cache):
        product = await seed.product(ORG, prices={"US": "10.00"})
        vip = await seed.client(ORG, username="vip")
        regular = await seed.client(ORG, username="regular")
        await seed.tier_rule(ORG, [product], [(1, 99, "4.00")], clients=[vip], name="VIP")
        carts = CartService(db, cache=cache)

        vip_cart = await carts.create_cart(ORG, vip.id, "US")
        vip_cart = await carts.add_product(ORG, vip_cart.id, product.id, None, 1)
        regular_cart = await carts.create_cart(ORG, regular.id, "US")
        regular_cart = await carts.add_product(ORG, regular_cart.id, product.id, None, 1)

        assert vip_cart.lines[0].unit_price == Decimal("4.00")
        assert regular_cart.lines[0].unit_price == Decimal("10.00")
