"""Order model."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, Numeric, Text, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, JSONType


class OrderStatus(str, Enum):
    """Order status enumeration."""
    OPEN = "open"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


# Statuses that hold stock and points
ACTIVE_STATUSES = {OrderStatus.OPEN.value, OrderStatus.PAID.value, OrderStatus.COMPLETED.value}
INACTIVE_STATUSES = {OrderStatus.CANCELLED.value, OrderStatus.FAILED.value}


class FanOutStatus(str, Enum):
    """Outcome of mirroring an order into upstream supplier organizations."""
    NONE = "none"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Order(Base):
    """
    Order created from exactly one cart.

    Immutable after creation except tracking number, payment method,
    address, status and appended meta events.
    """
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("organization_id", "order_key", name="uq_orders_org_key"),
        Index("ix_orders_org_status", "organization_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        nullable=False,
        index=True
    )
    order_key: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Per-organization sequence number"
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("clients.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    cart_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("carts.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=OrderStatus.OPEN.value,
        nullable=False,
        comment="open, paid, completed, cancelled, failed"
    )
    country: Mapped[str] = mapped_column(String(2), nullable=False)
    cart_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Amounts
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    shipping_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    discount_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    points_redeemed: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0"),
        comment="Points debited for affiliate lines"
    )

    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    shipping_service: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    shipping_method: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="Encrypted")
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    order_meta: Mapped[list] = mapped_column(
        JSONType,
        default=list,
        comment="Append-only operational events"
    )
    notified_paid_or_completed: Mapped[bool] = mapped_column(Boolean, default=False)

    # Dropship graph
    parent_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Downstream order this order fulfils"
    )
    root_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        nullable=True,
        index=True
    )
    fanout_status: Mapped[str] = mapped_column(
        String(20),
        default=FanOutStatus.NONE.value,
        nullable=False
    )
    fanout_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    @property
    def order_number(self) -> str:
        return f"ORD-{self.order_key:05d}"

    @property
    def holds_reservation(self) -> bool:
        """Only orders committed from a cart reserved stock and points; fan-out copies did not."""
        return self.root_order_id is None

    def __repr__(self) -> str:
        return f"<Order(number='{self.order_number}', status='{self.status}')>"
