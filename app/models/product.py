"""
Product catalog models.

Price tables are JSON objects keyed by ISO country code, for example
``{"US": "19.99", "DE": "17.50"}``. A ``variable`` product is never sold
directly; its variations carry the price tables.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, JSONType


class ProductType(str, Enum):
    """Product kind."""
    SIMPLE = "simple"
    VARIABLE = "variable"


def country_price(table: Optional[dict], country: str) -> Optional[Decimal]:
    """Read a country entry from a price table as Decimal, None when absent or blank."""
    if not table:
        return None
    value = table.get(country)
    if value is None:
        value = table.get(country.upper())
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


class Product(Base):
    """Sellable catalog entry priced in money."""
    __tablename__ = "products"
    __table_args__ = (
        Index("ix_products_org_sku", "organization_id", "sku"),
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

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    product_type: Mapped[str] = mapped_column(
        String(20),
        default=ProductType.SIMPLE.value,
        nullable=False,
        comment="simple, variable"
    )

    # Per-country price tables
    regular_price: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    sale_price: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    cost: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Stock policy
    manage_stock: Mapped[bool] = mapped_column(Boolean, default=False)
    allow_backorders: Mapped[bool] = mapped_column(Boolean, default=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    variations: Mapped[List["ProductVariation"]] = relationship(
        "ProductVariation",
        back_populates="product",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    @property
    def is_variable(self) -> bool:
        return self.product_type == ProductType.VARIABLE.value

    def __repr__(self) -> str:
        return f"<Product(name='{self.name}', type='{self.product_type}')>"


class ProductVariation(Base):
    """Sellable variation of a variable product."""
    __tablename__ = "product_variations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    attributes: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="e.g. {'color': 'red', 'size': 'M'}"
    )

    regular_price: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    sale_price: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    cost: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    product: Mapped["Product"] = relationship("Product", back_populates="variations")

    def __repr__(self) -> str:
        return f"<ProductVariation(name='{self.name}')>"
