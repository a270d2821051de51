"""
Tests — Order Commit
=====================
Commit pipeline from an open cart to an order: validation, fresh pricing,
all-or-nothing stock reservation, numbering, totals and the post-commit
status and payment operations.
"""

import uuid
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import func, select

from app.core.exceptions import (
    InsufficientBalanceError,
    InvalidInputError,
    NotFoundError,
    OutOfStockError,
    PaymentGatewayError,
    PermissionDeniedError,
)
from app.models import AffiliatePointLog, Cart, Order, WarehouseStock
from app.models.affiliate import PointsAction
from app.models.order import OrderStatus
from app.schemas.order import OrderCommit, OrderUpdate
from app.services.affiliate_points_service import AffiliatePointsService
from app.services.cart_service import compute_cart_hash
from app.services.notification_service import NotificationType
from app.services.order_service import CommitState
from app.services.payment_gateway_service import PaymentGatewayService


ORG = uuid.UUID("00000000-0000-0000-0000-0000000000a6")
OTHER_ORG = uuid.UUID("00000000-0000-0000-0000-0000000000b6")


async def stock_of(db, product_id) -> int:
    return await db.scalar(
        select(func.coalesce(func.sum(WarehouseStock.quantity), 0)).where(WarehouseStock.product_id == product_id)
    )


async def shop(seed, stock=10, price="10.00"):
    product = await seed.product(ORG, prices={"US": price}, manage_stock=True)
    await seed.stock(ORG, stock, product=product)
    client = await seed.client(ORG, user_id="user-1")
    return product, client


class TestCommit:
    async def test_commit_writes_order(self, db, seed, make_order_service, notifier):
        product, client = await shop(seed)
        wrap = await seed.product(ORG, prices={"US": "2.50"}, name="Gift wrap")
        cart = await seed.cart(ORG, client, lines=[(product, 5, "10.00"), (wrap, 2, "2.50")])
        service = make_order_service(db)

        result = await service.commit_order(
            ORG,
            OrderCommit(
                cart_id=cart.id,
                payment_method="card",
                shipping_total=Decimal("5"),
                discount_total=Decimal("2"),
                address="1 Main St, Springfield",
            ),
            client_id=client.id,
        )

        order = result.order
        assert result.state == CommitState.COMMITTED
        assert result.transitions == [
            CommitState.VALIDATING,
            CommitState.PRICING_RESOLVED,
            CommitState.STOCK_CHECKED,
            CommitState.STOCK_RESERVED,
            CommitState.ORDER_WRITTEN,
            CommitState.COMMITTED,
        ]
        assert result.fanout is None
        assert order.order_key == 1
        assert order.order_number == "ORD-00001"
        assert order.subtotal == Decimal("55.00")
        assert order.total_amount == Decimal("58.00")
        assert order.points_redeemed == Decimal("0")
        assert order.status == OrderStatus.OPEN.value
        assert order.fanout_status == "none"
        assert order.order_meta[0]["event"] == "created"
        assert await stock_of(db, product.id) == 5
        assert notifier.sent == [NotificationType.ORDER_PLACED]

    async def test_cart_is_closed_with_matching_hash(self, db, seed, make_order_service):
        product, client = await shop(seed)
        cart = await seed.cart(ORG, client, lines=[(product, 1, "10.00")])

        result = await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=cart.id), client_id=client.id)

        assert cart.status is False
        assert cart.cart_hash == result.order.cart_hash == compute_cart_hash(cart.lines)

    async def test_address_is_encrypted(self, db, seed, make_order_service):
        product, client = await shop(seed)
        cart = await seed.cart(ORG, client, lines=[(product, 1, "10.00")])
        service = make_order_service(db)

        result = await service.commit_order(
            ORG, OrderCommit(cart_id=cart.id, address="1 Main St"), client_id=client.id
        )

        assert result.order.address.startswith("ENC:")
        assert service.decrypt_address(result.order) == "1 Main St"

    async def test_client_taken_from_request_body(self, db, seed, make_order_service):
        product, client = await shop(seed)
        cart = await seed.cart(ORG, client, lines=[(product, 1, "10.00")])

        result = await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=cart.id, client_id=client.id))
        assert result.order.client_id == client.id

    async def test_discount_never_drives_total_negative(self, db, seed, make_order_service):
        product, client = await shop(seed)
        cart = await seed.cart(ORG, client, lines=[(product, 1, "10.00")])

        result = await make_order_service(db).commit_order(
            ORG, OrderCommit(cart_id=cart.id, discount_total=Decimal("25")), client_id=client.id
        )
        assert result.order.total_amount == Decimal("0")


class TestCommitPricing:
    async def test_stale_line_price_is_refreshed(self, db, seed, make_order_service):
        product, client = await shop(seed, price="10.00")
        cart = await seed.cart(ORG, client, lines=[(product, 2, "1.00")])

        result = await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=cart.id), client_id=client.id)
        assert result.order.subtotal == Decimal("20.00")

    async def test_tier_step_applied_on_group_quantity(self, db, seed, make_order_service):
        product, client = await shop(seed, price="10.00")
        await seed.tier_rule(ORG, [product], [(5, 12, "8.00")])
        cart = await seed.cart(ORG, client, lines=[(product, 6, "10.00")])

        result = await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=cart.id), client_id=client.id)
        assert result.order.subtotal == Decimal("48.00")

    async def test_points_lines_recorded_separately(self, db, seed, make_order_service):
        product, client = await shop(seed)
        mug = await seed.affiliate_product(ORG, regular={"default": {"US": "100"}})
        await seed.points(ORG, client, 500)
        await AffiliatePointsService(db).redeem(client.id, ORG, Decimal("200"))
        cart = await seed.cart(ORG, client, lines=[(product, 1, "10.00")], affiliate_lines=[(mug, 2, "100")])

        result = await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=cart.id), client_id=client.id)

        assert result.order.subtotal == Decimal("10.00")
        assert result.order.points_redeemed == Decimal("200")
        assert await AffiliatePointsService(db).available_points(client.id, ORG) == Decimal("300")


class TestCommitRejections:
    async def test_out_of_stock_writes_nothing(self, db, seed, make_order_service, notifier):
        product, client = await shop(seed, stock=3)
        cart = await seed.cart(ORG, client, lines=[(product, 5, "10.00")])
        await seed.commit()
        cart_id, client_id, product_id = cart.id, client.id, product.id

        with pytest.raises(OutOfStockError) as exc_info:
            await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=cart_id), client_id=client_id)
        await db.rollback()

        assert exc_info.value.failures == [{"product_id": str(product_id), "requested": 5, "available": 3}]
        assert await db.scalar(select(func.count()).select_from(Order)) == 0
        assert await db.scalar(select(Cart.status).where(Cart.id == cart_id)) is True
        assert await stock_of(db, product_id) == 3
        assert notifier.sent == []

    async def test_one_short_line_reserves_nothing(self, db, seed, make_order_service):
        product, client = await shop(seed, stock=10)
        scarce = await seed.product(ORG, prices={"US": "3.00"}, manage_stock=True, name="Scarce")
        await seed.stock(ORG, 1, product=scarce)
        cart = await seed.cart(ORG, client, lines=[(product, 4, "10.00"), (scarce, 2, "3.00")])
        await seed.commit()
        cart_id, client_id, product_id = cart.id, client.id, product.id

        with pytest.raises(OutOfStockError):
            await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=cart_id), client_id=client_id)
        await db.rollback()

        assert await stock_of(db, product_id) == 10

    async def test_cart_of_another_client(self, db, seed, make_order_service):
        product, client = await shop(seed)
        stranger = await seed.client(ORG, username="mallory")
        cart = await seed.cart(ORG, client, lines=[(product, 1, "10.00")])

        with pytest.raises(InvalidInputError):
            await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=cart.id), client_id=stranger.id)

    async def test_client_required(self, db, seed, make_order_service):
        product, client = await shop(seed)
        cart = await seed.cart(ORG, client, lines=[(product, 1, "10.00")])

        with pytest.raises(InvalidInputError):
            await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=cart.id))

    async def test_closed_cart(self, db, seed, make_order_service):
        product, client = await shop(seed)
        cart = await seed.cart(ORG, client, lines=[(product, 1, "10.00")], status=False)

        with pytest.raises(InvalidInputError):
            await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=cart.id), client_id=client.id)

    async def test_empty_cart(self, db, seed, make_order_service):
        _, client = await shop(seed)
        cart = await seed.cart(ORG, client)

        with pytest.raises(InvalidInputError):
            await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=cart.id), client_id=client.id)

    async def test_unknown_cart(self, db, seed, make_order_service):
        _, client = await shop(seed)
        with pytest.raises(NotFoundError):
            await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=uuid.uuid4()), client_id=client.id)

    async def test_affiliate_level_rechecked(self, db, seed, make_order_service):
        bronze = await seed.level(ORG, "Bronze", 0)
        gold = await seed.level(ORG, "Gold", 500)
        mug = await seed.affiliate_product(ORG, regular={"default": {"US": "100"}}, min_level=gold)
        client = await seed.client(ORG, level=bronze)
        cart = await seed.cart(ORG, client, affiliate_lines=[(mug, 1, "100")])

        with pytest.raises(PermissionDeniedError):
            await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=cart.id), client_id=client.id)

    async def test_negative_points_balance(self, db, seed, make_order_service):
        mug = await seed.affiliate_product(ORG, regular={"default": {"US": "100"}})
        client = await seed.client(ORG)
        await seed.points(ORG, client, 100)
        await seed.points(ORG, client, -150)
        cart = await seed.cart(ORG, client, affiliate_lines=[(mug, 1, "100")])

        with pytest.raises(InsufficientBalanceError):
            await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=cart.id), client_id=client.id)


class TestNumbering:
    async def test_numbers_are_sequential_per_organization(self, db, seed, make_order_service):
        product, client = await shop(seed, stock=100)
        other_product = await seed.product(OTHER_ORG, prices={"US": "4.00"})
        other_client = await seed.client(OTHER_ORG)
        first = await seed.cart(ORG, client, lines=[(product, 1, "10.00")])
        second = await seed.cart(ORG, client, lines=[(product, 1, "10.00")])
        other = await seed.cart(OTHER_ORG, other_client, lines=[(other_product, 1, "4.00")])
        service = make_order_service(db)

        one = await service.commit_order(ORG, OrderCommit(cart_id=first.id), client_id=client.id)
        two = await service.commit_order(ORG, OrderCommit(cart_id=second.id), client_id=client.id)
        elsewhere = await service.commit_order(OTHER_ORG, OrderCommit(cart_id=other.id), client_id=other_client.id)

        assert (one.order.order_key, two.order.order_key) == (1, 2)
        assert elsewhere.order.order_key == 1


class TestStatusChanges:
    async def _committed(self, db, seed, make_order_service):
        product, client = await shop(seed, stock=10)
        mug = await seed.affiliate_product(ORG, regular={"default": {"US": "100"}})
        await seed.points(ORG, client, 500)
        await AffiliatePointsService(db).redeem(client.id, ORG, Decimal("100"))
        cart = await seed.cart(ORG, client, lines=[(product, 2, "10.00")], affiliate_lines=[(mug, 1, "100")])
        service = make_order_service(db)
        result = await service.commit_order(ORG, OrderCommit(cart_id=cart.id), client_id=client.id)
        return service, result.order, product, client

    async def test_cancel_returns_stock_and_points(self, db, seed, make_order_service, notifier):
        service, order, product, client = await self._committed(db, seed, make_order_service)
        points = AffiliatePointsService(db)
        assert await stock_of(db, product.id) == 8
        assert await points.available_points(client.id, ORG) == Decimal("400")

        await service.change_status(ORG, order.id, OrderStatus.CANCELLED)

        assert order.status == "cancelled"
        assert await stock_of(db, product.id) == 10
        assert await points.available_points(client.id, ORG) == Decimal("500")
        refund = await db.scalar(
            select(AffiliatePointLog).where(AffiliatePointLog.action == PointsAction.REFUND_AFFILIATE.value)
        )
        assert refund.points == Decimal("100")
        assert order.order_meta[-1]["event"] == "status_changed"
        assert order.order_meta[-1]["to"] == "cancelled"
        assert notifier.sent[-1] == NotificationType.ORDER_CANCELLED

    async def test_reopen_charges_again(self, db, seed, make_order_service):
        service, order, product, client = await self._committed(db, seed, make_order_service)
        points = AffiliatePointsService(db)

        await service.change_status(ORG, order.id, OrderStatus.CANCELLED)
        await service.change_status(ORG, order.id, OrderStatus.OPEN)

        assert await stock_of(db, product.id) == 8
        assert await points.available_points(client.id, ORG) == Decimal("400")
        assert await points.log_sum(client.id, ORG) == Decimal("400")

    async def test_moving_between_active_statuses_keeps_stock(self, db, seed, make_order_service):
        service, order, product, _ = await self._committed(db, seed, make_order_service)

        await service.change_status(ORG, order.id, OrderStatus.PAID)
        assert await stock_of(db, product.id) == 8

    async def test_paid_or_completed_notifies_once(self, db, seed, make_order_service, notifier):
        service, order, _, _ = await self._committed(db, seed, make_order_service)

        await service.change_status(ORG, order.id, OrderStatus.PAID)
        await service.change_status(ORG, order.id, OrderStatus.COMPLETED)

        assert notifier.sent == [NotificationType.ORDER_PLACED, NotificationType.ORDER_PAID]
        assert order.notified_paid_or_completed is True

    async def test_unknown_order(self, db, make_order_service):
        with pytest.raises(NotFoundError):
            await make_order_service(db).change_status(ORG, uuid.uuid4(), OrderStatus.PAID)


class TestOperationalUpdates:
    async def _order(self, db, seed, make_order_service, **kwargs):
        product, client = await shop(seed)
        cart = await seed.cart(ORG, client, lines=[(product, 1, "10.00")])
        service = make_order_service(db, **kwargs)
        result = await service.commit_order(
            ORG, OrderCommit(cart_id=cart.id, payment_method="card"), client_id=client.id
        )
        return service, result.order

    async def test_tracking_and_address(self, db, seed, make_order_service):
        service, order = await self._order(db, seed, make_order_service)

        await service.update_order(ORG, order.id, OrderUpdate(tracking_number="1Z999", address="2 Side St"))

        assert order.tracking_number == "1Z999"
        assert service.decrypt_address(order) == "2 Side St"
        assert [e["event"] for e in order.order_meta] == ["created", "tracking_updated", "address_updated"]

    async def test_payment_method_change_cancels_invoice(self, db, seed, make_order_service):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(404)

        gateway = PaymentGatewayService(
            base_url="https://pay.example", api_key="k", transport=httpx.MockTransport(handler)
        )
        service, order = await self._order(db, seed, make_order_service, gateway=gateway)

        await service.change_payment_method(ORG, order.id, "bank_transfer", pending_invoice_id="inv-1")

        assert calls == ["/invoices/inv-1/cancel"]
        assert order.payment_method == "bank_transfer"
        assert order.order_meta[-1]["cancelled_invoice"] == "inv-1"

    async def test_gateway_refusal_keeps_payment_method(self, db, seed, make_order_service):
        gateway = PaymentGatewayService(
            base_url="https://pay.example",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
        )
        service, order = await self._order(db, seed, make_order_service, gateway=gateway)

        with pytest.raises(PaymentGatewayError):
            await service.change_payment_method(ORG, order.id, "bank_transfer", pending_invoice_id="inv-1")
        assert order.payment_method == "card"

    async def test_list_orders_newest_first(self, db, seed, make_order_service):
        product, client = await shop(seed, stock=10)
        service = make_order_service(db)
        for _ in range(3):
            cart = await seed.cart(ORG, client, lines=[(product, 1, "10.00")])
            await service.commit_order(ORG, OrderCommit(cart_id=cart.id), client_id=client.id)

        orders, total = await service.list_orders(ORG, page=1, size=2)

        assert total == 3
        assert [o.order_key for o in orders] == [3, 2]
