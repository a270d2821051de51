"""
Tests — Inventory Reservation
==============================
Pre-check, greedy multi-warehouse reservation, backorders, release and
the relaxed cart-side adjustment.
"""

import uuid

import pytest

from app.core.exceptions import OutOfStockError
from app.services.inventory_service import InventoryService, StockDemand, merge_demands


ORG = uuid.UUID("00000000-0000-0000-0000-0000000000a3")


def demand(product, quantity, variation=None, country="US"):
    return StockDemand(
        product_id=product.id,
        variation_id=variation.id if variation else None,
        country=country,
        quantity=quantity,
    )


class TestMergeDemands:
    def test_same_key_is_summed(self):
        product_id = uuid.uuid4()
        merged = merge_demands([
            StockDemand(product_id=product_id, country="us", quantity=2),
            StockDemand(product_id=product_id, country="US", quantity=3),
        ])
        assert len(merged) == 1
        assert merged[0].quantity == 5

    def test_zero_quantities_dropped(self):
        assert merge_demands([StockDemand(product_id=uuid.uuid4(), country="US", quantity=0)]) == []


class TestAvailability:
    async def test_sums_positive_rows_across_warehouses(self, db, seed):
        product = await seed.product(ORG, manage_stock=True)
        north = await seed.warehouse(ORG, "North")
        south = await seed.warehouse(ORG, "South")
        await seed.stock(ORG, 2, product=product, warehouse=north)
        await seed.stock(ORG, 5, product=product, warehouse=south)
        await seed.stock(ORG, -4, product=product)

        available = await InventoryService(db).available_quantity(ORG, product.id, None, "US")
        assert available == 7

    async def test_variations_and_countries_are_separate(self, db, seed):
        product = await seed.product(ORG, manage_stock=True, variable=True)
        small = await seed.variation(product, name="Small")
        large = await seed.variation(product, name="Large")
        await seed.stock(ORG, 4, product=product, variation=small)
        await seed.stock(ORG, 9, product=product, variation=small, country="DE")

        inventory = InventoryService(db)
        assert await inventory.available_quantity(ORG, product.id, small.id, "US") == 4
        assert await inventory.available_quantity(ORG, product.id, large.id, "US") == 0
        assert await inventory.available_quantity(ORG, product.id, None, "US") == 0

    async def test_failure_report(self, db, seed):
        product = await seed.product(ORG, manage_stock=True)
        await seed.stock(ORG, 1, product=product)
        await seed.stock(ORG, 2, product=product)

        failures = await InventoryService(db).check_availability(ORG, [demand(product, 5)])
        assert failures == [{"product_id": str(product.id), "requested": 5, "available": 3}]

    async def test_unmanaged_and_backorder_products_always_pass(self, db, seed):
        unmanaged = await seed.product(ORG, manage_stock=False, name="Digital")
        backorder = await seed.product(ORG, manage_stock=True, allow_backorders=True, name="Made to order")

        failures = await InventoryService(db).check_availability(
            ORG, [demand(unmanaged, 50), demand(backorder, 50)]
        )
        assert failures == []


class TestReserve:
    async def test_largest_row_first(self, db, seed):
        product = await seed.product(ORG, manage_stock=True)
        small_row = await seed.stock(ORG, 2, product=product, warehouse=await seed.warehouse(ORG, "A"))
        large_row = await seed.stock(ORG, 5, product=product, warehouse=await seed.warehouse(ORG, "B"))

        result = await InventoryService(db).reserve(ORG, [demand(product, 6)])

        assert large_row.quantity == 0
        assert small_row.quantity == 1
        assert [a["quantity"] for a in result.allocations] == [5, 1]
        assert result.backordered == []

    async def test_shortage_writes_nothing(self, db, seed):
        product = await seed.product(ORG, manage_stock=True)
        first = await seed.stock(ORG, 1, product=product)
        second = await seed.stock(ORG, 2, product=product)

        with pytest.raises(OutOfStockError) as exc_info:
            await InventoryService(db).reserve(ORG, [demand(product, 5)])

        assert exc_info.value.failures == [{"product_id": str(product.id), "requested": 5, "available": 3}]
        assert (first.quantity, second.quantity) == (1, 2)

    async def test_one_short_line_blocks_every_line(self, db, seed):
        plenty = await seed.product(ORG, manage_stock=True, name="Plenty")
        scarce = await seed.product(ORG, manage_stock=True, name="Scarce")
        plenty_row = await seed.stock(ORG, 10, product=plenty)
        await seed.stock(ORG, 1, product=scarce)

        with pytest.raises(OutOfStockError):
            await InventoryService(db).reserve(ORG, [demand(plenty, 3), demand(scarce, 2)])
        assert plenty_row.quantity == 10

    async def test_backorder_goes_negative_on_largest_row(self, db, seed):
        product = await seed.product(ORG, manage_stock=True, allow_backorders=True)
        small_row = await seed.stock(ORG, 1, product=product)
        large_row = await seed.stock(ORG, 2, product=product)

        result = await InventoryService(db).reserve(ORG, [demand(product, 6)])

        assert large_row.quantity == -3
        assert small_row.quantity == 0
        assert result.backordered == [{"product_id": str(product.id), "quantity": 3}]

    async def test_backorder_without_rows_creates_one(self, db, seed):
        product = await seed.product(ORG, manage_stock=True, allow_backorders=True)
        inventory = InventoryService(db)

        await inventory.reserve(ORG, [demand(product, 4)])

        rows = await inventory.warehouse_stock(ORG, product.id, "US")
        assert [row.quantity for row in rows] == [-4]

    async def test_unmanaged_product_is_untouched(self, db, seed):
        product = await seed.product(ORG, manage_stock=False)
        inventory = InventoryService(db)

        result = await inventory.reserve(ORG, [demand(product, 4)])

        assert result.allocations == []
        assert await inventory.warehouse_stock(ORG, product.id) == []


class TestRelease:
    async def test_release_returns_stock_to_oldest_row(self, db, seed):
        product = await seed.product(ORG, manage_stock=True)
        oldest = await seed.stock(ORG, 0, product=product)
        newer = await seed.stock(ORG, 3, product=product)

        await InventoryService(db).release(ORG, [demand(product, 4)])

        assert oldest.quantity == 4
        assert newer.quantity == 3


class TestAdjustStock:
    async def test_decrement_oldest_row(self, db, seed):
        product = await seed.product(ORG, manage_stock=True)
        row = await seed.stock(ORG, 5, product=product)

        await InventoryService(db).adjust_stock(ORG, product.id, None, "US", -2)
        assert row.quantity == 3

    async def test_decrement_below_zero_rejected(self, db, seed):
        product = await seed.product(ORG, manage_stock=True)
        row = await seed.stock(ORG, 1, product=product)

        with pytest.raises(OutOfStockError):
            await InventoryService(db).adjust_stock(ORG, product.id, None, "US", -2)
        assert row.quantity == 1

    async def test_backorders_allow_negative(self, db, seed):
        product = await seed.product(ORG, manage_stock=True, allow_backorders=True)
        row = await seed.stock(ORG, 1, product=product)

        await InventoryService(db).adjust_stock(ORG, product.id, None, "US", -3)
        assert row.quantity == -2

    async def test_affiliate_product_row_created(self, db, seed):
        product = await seed.affiliate_product(ORG, regular={"default": {"US": "10"}}, manage_stock=True)
        inventory = InventoryService(db)

        await inventory.adjust_stock(ORG, product.id, None, "US", 6)

        row = await inventory._first_row(ORG, product.id, None, "US", is_affiliate=True)
        assert row.quantity == 6
        assert row.product_id is None

    async def test_unmanaged_product_ignored(self, db, seed):
        product = await seed.product(ORG, manage_stock=False)
        inventory = InventoryService(db)

        await inventory.adjust_stock(ORG, product.id, None, "US", -10)
        assert await inventory.warehouse_stock(ORG, product.id) == []
