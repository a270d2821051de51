"""
Order commit and post-commit order operations.

commit_order() runs one transaction through:

    VALIDATING -> PRICING_RESOLVED -> STOCK_CHECKED -> STOCK_RESERVED
    -> ORDER_WRITTEN -> (FANOUT_PENDING | COMMITTED)

Any failure before the commit leaves the state REJECTED and propagates; the
transaction owner rolls back every write made so far. Fan-out into upstream
supplier organizations runs after the root order is committed, in its own
session, and its outcome is recorded on the root order instead of being
raised.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    CommerceError,
    InvalidInputError,
    NotFoundError,
    InsufficientBalanceError,
    OutOfStockError,
)
from app.models.affiliate import PointsAction
from app.models.cart import Cart
from app.models.client import Client
from app.models.order import Order, OrderStatus, FanOutStatus, ACTIVE_STATUSES, INACTIVE_STATUSES
from app.schemas.order import OrderCommit, OrderUpdate
from app.services.affiliate_points_service import AffiliatePointsService
from app.services.cache_service import CacheService
from app.services.cart_service import CartService, compute_cart_hash
from app.services.catalog_service import CatalogService
from app.services.encryption_service import EncryptionService, get_encryption_service
from app.services.fanout_service import FanOutService, FanOutResult
from app.services.inventory_service import InventoryService, StockDemand
from app.services.notification_service import (
    NotificationService,
    NotificationType,
    NotificationChannel,
    DEFAULT_ORDER_CHANNELS,
)
from app.services.order_sequence_service import OrderSequenceService
from app.services.payment_gateway_service import PaymentGatewayService
from app.services.pricing_service import PricingService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class CommitState(str, Enum):
    """Order commit pipeline states."""
    VALIDATING = "validating"
    PRICING_RESOLVED = "pricing_resolved"
    STOCK_CHECKED = "stock_checked"
    STOCK_RESERVED = "stock_reserved"
    ORDER_WRITTEN = "order_written"
    FANOUT_PENDING = "fanout_pending"
    COMMITTED = "committed"
    REJECTED = "rejected"


@dataclass
class CommitResult:
    """Committed root order plus the fan-out outcome, if any."""
    order: Order
    state: CommitState
    fanout: Optional[FanOutResult] = None
    transitions: List[CommitState] = field(default_factory=list)

    @property
    def upstream_order_ids(self) -> List[uuid.UUID]:
        return list(self.fanout.created_order_ids) if self.fanout else []


class _CommitTracker:
    """Logs every state transition of one commit attempt."""

    def __init__(self, organization_id: uuid.UUID, cart_id: uuid.UUID):
        self.organization_id = organization_id
        self.cart_id = cart_id
        self.state = CommitState.VALIDATING
        self.history = [CommitState.VALIDATING]
        logger.info(f"Order commit cart={cart_id} org={organization_id}: {self.state.value}")

    def advance(self, state: CommitState) -> None:
        self.state = state
        self.history.append(state)
        logger.info(f"Order commit cart={self.cart_id}: {state.value}")

    def reject(self, error: CommerceError) -> None:
        logger.info(
            f"Order commit cart={self.cart_id} rejected in {self.state.value}: "
            f"{error.kind} - {error.message}"
        )
        self.state = CommitState.REJECTED
        self.history.append(CommitState.REJECTED)


class OrderService:
    """Commit carts into orders and manage committed orders."""

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[CacheService] = None,
        session_factory: Optional[Callable] = None,
        notifier: Optional[NotificationService] = None,
        gateway: Optional[PaymentGatewayService] = None,
        encryption: Optional[EncryptionService] = None,
        fanout_max_depth: Optional[int] = None,
    ):
        self.db = db
        self.catalog = CatalogService(db)
        self.carts = CartService(db, cache=cache)
        self.pricing = PricingService(db, cache=cache)
        self.inventory = InventoryService(db)
        self.points = AffiliatePointsService(db)
        self.sequences = OrderSequenceService(db)
        self.notifier = notifier or NotificationService()
        self.gateway = gateway or PaymentGatewayService()
        self.encryption = encryption or get_encryption_service()
        self.fanout = FanOutService(session_factory=session_factory, max_depth=fanout_max_depth)

    # ==================== COMMIT ====================

    async def commit_order(
        self,
        organization_id: uuid.UUID,
        data: OrderCommit,
        client_id: Optional[uuid.UUID] = None,
    ) -> CommitResult:
        """
        Turn an open cart into an order.

        Args:
            organization_id: Caller's organization
            data: Cart reference plus shipping/payment details
            client_id: Caller's client; ``data.client_id`` is used when absent

        Raises:
            InvalidInputError: cart closed, empty or owned by another client
            NotFoundError: cart, client or a line's product missing
            PermissionDeniedError: affiliate level no longer sufficient
            InsufficientBalanceError: points balance went negative since the cart debit
            OutOfStockError: stock cannot cover a line and backorders are off
        """
        tracker = _CommitTracker(organization_id, data.cart_id)
        try:
            cart, client = await self._validate(organization_id, data, client_id or data.client_id)

            await self._resolve_prices(organization_id, cart, client)
            tracker.advance(CommitState.PRICING_RESOLVED)

            demands = self._stock_demands(cart)
            failures = await self.inventory.check_availability(organization_id, demands)
            if failures:
                raise OutOfStockError(failures)
            tracker.advance(CommitState.STOCK_CHECKED)

            await self.inventory.reserve(organization_id, demands)
            tracker.advance(CommitState.STOCK_RESERVED)

            order = await self._write_order(organization_id, cart, client, data)
            tracker.advance(CommitState.ORDER_WRITTEN)

            mappings = await self.catalog.get_source_mappings(
                line.product_id for line in cart.lines if line.product_id is not None
            )
            if mappings:
                order.fanout_status = FanOutStatus.PENDING.value
        except CommerceError as e:
            tracker.reject(e)
            raise

        await self.db.commit()
        logger.info(f"Committed order {order.order_number} ({order.id}) for org {organization_id}")

        await self.notifier.send_notification(
            organization_id=str(organization_id),
            notification_type=NotificationType.ORDER_PLACED,
            channels=[NotificationChannel.IN_APP],
            variables={"order_number": order.order_number, "total": order.total_amount},
            client_id=str(client.id),
            country=order.country,
        )

        result = CommitResult(order=order, state=CommitState.COMMITTED)
        if order.fanout_status == FanOutStatus.PENDING.value:
            tracker.advance(CommitState.FANOUT_PENDING)
            result.fanout = await self.fanout.fan_out(order.id)
            await self.db.refresh(order)
        tracker.advance(CommitState.COMMITTED)
        result.transitions = list(tracker.history)
        return result

    async def _validate(
        self,
        organization_id: uuid.UUID,
        data: OrderCommit,
        client_id: Optional[uuid.UUID],
    ) -> Tuple[Cart, Client]:
        if client_id is None:
            raise InvalidInputError("Client is required to commit a cart")

        cart = await self.carts.get_cart(organization_id, data.cart_id, lock=True)
        if cart.client_id != client_id:
            raise InvalidInputError(f"Cart {cart.id} does not belong to client {client_id}")
        if not cart.status:
            raise InvalidInputError(f"Cart {cart.id} is already committed")
        if not cart.lines:
            raise InvalidInputError(f"Cart {cart.id} is empty")

        client = await self.catalog.get_client(organization_id, client_id)
        if client is None:
            raise NotFoundError(f"Client {client_id} not found")
        return cart, client

    async def _resolve_prices(self, organization_id: uuid.UUID, cart: Cart, client: Client) -> None:
        """Re-resolve every money line and re-check affiliate gating."""
        points_total = ZERO
        for line in cart.lines:
            if not line.is_affiliate:
                continue
            affiliate_product = await self.catalog.get_affiliate_product(
                organization_id, line.affiliate_product_id
            )
            if affiliate_product is None:
                raise NotFoundError(f"Affiliate product {line.affiliate_product_id} not found")
            await self.pricing.check_level(affiliate_product, client.level_id)
            points_total += line.line_total

        if points_total > 0:
            # Points were debited when the lines were added
            available = await self.points.available_points(client.id, organization_id)
            if available < 0:
                raise InsufficientBalanceError(required=points_total, available=points_total + available)

        await self.carts.reprice_tier_groups(organization_id, cart, client, fresh=True)
        await self.db.flush()

    @staticmethod
    def _stock_demands(cart: Cart) -> List[StockDemand]:
        return [
            StockDemand(
                product_id=line.product_id,
                variation_id=line.variation_id,
                country=cart.country,
                quantity=line.quantity,
            )
            for line in cart.lines
            if not line.is_affiliate
        ]

    async def _write_order(
        self,
        organization_id: uuid.UUID,
        cart: Cart,
        client: Client,
        data: OrderCommit,
    ) -> Order:
        order_key = await self.sequences.next_number(organization_id)

        subtotal = sum((line.line_total for line in cart.lines if not line.is_affiliate), ZERO)
        points_redeemed = sum((line.line_total for line in cart.lines if line.is_affiliate), ZERO)
        total = subtotal + data.shipping_total - data.discount_total
        cart_hash = compute_cart_hash(cart.lines)

        order = Order(
            organization_id=organization_id,
            order_key=order_key,
            client_id=client.id,
            cart_id=cart.id,
            status=OrderStatus.OPEN.value,
            country=cart.country,
            cart_hash=cart_hash,
            subtotal=subtotal,
            shipping_total=data.shipping_total,
            discount_total=data.discount_total,
            total_amount=max(total, ZERO),
            points_redeemed=points_redeemed,
            coupon_code=data.coupon_code,
            payment_method=data.payment_method,
            shipping_service=data.shipping_service,
            shipping_method=data.shipping_method,
            address=self.encryption.encrypt(data.address),
            order_meta=[self._meta_event("created")],
            fanout_status=FanOutStatus.NONE.value,
        )
        self.db.add(order)

        cart.status = False
        cart.cart_hash = cart_hash
        cart.cart_updated_hash = cart_hash
        await self.db.flush()
        return order

    # ==================== STATUS ====================

    async def change_status(
        self,
        organization_id: uuid.UUID,
        order_id: uuid.UUID,
        new_status: OrderStatus,
    ) -> Order:
        """
        Move an order between statuses.

        Leaving the active set (open, paid, completed) returns stock and
        refunds affiliate points; coming back charges them again. Fan-out
        orders never held a reservation, so only their status moves. The first
        move to paid or completed notifies the client once; every
        cancellation notifies too.
        """
        new_status = OrderStatus(new_status).value
        order = await self.get_order(organization_id, order_id, lock=True)
        old_status = order.status
        if old_status == new_status:
            return order

        cart = await self.carts.get_cart(organization_id, order.cart_id)
        points_total = sum((line.line_total for line in cart.lines if line.is_affiliate), ZERO)

        reserved = order.holds_reservation
        if reserved and old_status in ACTIVE_STATUSES and new_status in INACTIVE_STATUSES:
            await self.inventory.release(organization_id, self._stock_demands(cart))
            for line in cart.lines:
                if line.is_affiliate:
                    await self.inventory.adjust_stock(
                        organization_id, line.affiliate_product_id, line.variation_id,
                        cart.country, line.quantity,
                    )
            if points_total > 0:
                await self.points.refund(
                    order.client_id, organization_id, points_total,
                    action=PointsAction.REFUND_AFFILIATE.value,
                    description=f"Order {order.order_number} {new_status}",
                )
        elif reserved and old_status in INACTIVE_STATUSES and new_status in ACTIVE_STATUSES:
            await self.inventory.reserve(organization_id, self._stock_demands(cart))
            for line in cart.lines:
                if line.is_affiliate:
                    await self.inventory.adjust_stock(
                        organization_id, line.affiliate_product_id, line.variation_id,
                        cart.country, -line.quantity,
                    )
            if points_total > 0:
                await self.points.redeem(
                    order.client_id, organization_id, points_total,
                    action=PointsAction.PURCHASE_AFFILIATE.value,
                    description=f"Order {order.order_number} {new_status}",
                )

        order.status = new_status
        self._append_meta(order, "status_changed", {"from": old_status, "to": new_status})

        notify = (
            new_status in (OrderStatus.PAID.value, OrderStatus.COMPLETED.value)
            and not order.notified_paid_or_completed
        )
        if notify:
            order.notified_paid_or_completed = True
        await self.db.flush()
        logger.info(f"Order {order.order_number} status {old_status} -> {new_status}")

        notification_type = None
        if notify:
            notification_type = (
                NotificationType.ORDER_PAID if new_status == OrderStatus.PAID.value
                else NotificationType.ORDER_COMPLETED
            )
        elif new_status == OrderStatus.CANCELLED.value:
            notification_type = NotificationType.ORDER_CANCELLED

        if notification_type is not None:
            await self.notifier.send_notification(
                organization_id=str(organization_id),
                notification_type=notification_type,
                channels=DEFAULT_ORDER_CHANNELS,
                variables={"order_number": order.order_number, "total": order.total_amount},
                client_id=str(order.client_id),
                country=order.country,
            )
        return order

    # ==================== OPERATIONAL UPDATES ====================

    async def update_order(
        self,
        organization_id: uuid.UUID,
        order_id: uuid.UUID,
        data: OrderUpdate,
    ) -> Order:
        """Change tracking number or address, or append a meta event."""
        order = await self.get_order(organization_id, order_id, lock=True)

        if data.tracking_number is not None:
            order.tracking_number = data.tracking_number
            self._append_meta(order, "tracking_updated", {"tracking_number": data.tracking_number})
        if data.address is not None:
            order.address = self.encryption.encrypt(data.address)
            self._append_meta(order, "address_updated")
        if data.meta_event:
            self._append_meta(order, data.meta_event.get("event", "note"), {
                k: v for k, v in data.meta_event.items() if k != "event"
            })

        await self.db.flush()
        return order

    async def change_payment_method(
        self,
        organization_id: uuid.UUID,
        order_id: uuid.UUID,
        payment_method: str,
        pending_invoice_id: Optional[str] = None,
    ) -> Order:
        """
        Switch the payment method, cancelling the pending invoice first.

        Raises:
            PaymentGatewayError: the gateway refused the cancellation; nothing changes
        """
        order = await self.get_order(organization_id, order_id, lock=True)

        if pending_invoice_id:
            await self.gateway.cancel_invoice(pending_invoice_id)

        old_method = order.payment_method
        order.payment_method = payment_method
        self._append_meta(order, "payment_method_changed", {
            "from": old_method,
            "to": payment_method,
            "cancelled_invoice": pending_invoice_id,
        })
        await self.db.flush()
        logger.info(f"Order {order.order_number} payment method {old_method} -> {payment_method}")
        return order

    # ==================== QUERIES ====================

    async def get_order(self, organization_id: uuid.UUID, order_id: uuid.UUID, lock: bool = False) -> Order:
        query = select(Order).where(Order.id == order_id, Order.organization_id == organization_id)
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    async def list_orders(
        self,
        organization_id: uuid.UUID,
        status: Optional[str] = None,
        client_id: Optional[uuid.UUID] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[Order], int]:
        conditions = [Order.organization_id == organization_id]
        if status:
            conditions.append(Order.status == status)
        if client_id:
            conditions.append(Order.client_id == client_id)

        total = await self.db.scalar(select(func.count()).select_from(Order).where(*conditions))
        result = await self.db.execute(
            select(Order)
            .where(*conditions)
            .order_by(Order.order_key.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        return list(result.scalars().all()), total or 0

    def decrypt_address(self, order: Order) -> Optional[str]:
        return self.encryption.decrypt(order.address)

    # ==================== HELPERS ====================

    @staticmethod
    def _meta_event(event: str, details: Optional[dict] = None) -> dict:
        entry = {"event": event, "at": datetime.now(timezone.utc).isoformat()}
        if details:
            entry.update(details)
        return entry

    def _append_meta(self, order: Order, event: str, details: Optional[dict] = None) -> None:
        # JSON columns are not mutation-tracked
        order.order_meta = [*(order.order_meta or []), self._meta_event(event, details)]
