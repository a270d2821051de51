"""Cart and cart line models."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, Numeric, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType


class Cart(Base):
    """
    Cart of one client.

    ``status`` True means open and mutable, False means committed.
    """
    __tablename__ = "carts"

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
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    country: Mapped[str] = mapped_column(String(2), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), default="store", comment="store, pos")
    status: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    cart_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Content hash of the committed lines"
    )
    cart_updated_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Content hash recomputed after every line mutation"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    lines: Mapped[List["CartLine"]] = relationship(
        "CartLine",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartLine.created_at",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Cart(id='{self.id}', open={self.status})>"


class CartLine(Base):
    """A line references either a normal product or an affiliate product, never both."""
    __tablename__ = "cart_products"
    __table_args__ = (
        CheckConstraint(
            "(product_id IS NULL) <> (affiliate_product_id IS NULL)",
            name="ck_cart_line_catalog"
        ),
        CheckConstraint("quantity > 0", name="ck_cart_line_quantity"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    cart_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("carts.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=True
    )
    affiliate_product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("affiliate_products.id", ondelete="CASCADE"),
        nullable=True
    )
    variation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("product_variations.id", ondelete="CASCADE"),
        nullable=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Money for products, points for affiliate products"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    cart: Mapped["Cart"] = relationship("Cart", back_populates="lines")

    @property
    def is_affiliate(self) -> bool:
        return self.affiliate_product_id is not None

    @property
    def catalog_id(self) -> uuid.UUID:
        return self.affiliate_product_id if self.is_affiliate else self.product_id

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.unit_price) * self.quantity

    def __repr__(self) -> str:
        return f"<CartLine(qty={self.quantity}, unit_price={self.unit_price})>"
