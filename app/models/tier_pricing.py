"""Volume tier pricing rules."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, Numeric, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, JSONType


class TierPricing(Base):
    """
    Organization-scoped volume discount rule.

    A rule with targeted clients applies only to them and wins over general
    rules; among equal matches the newest rule wins.
    """
    __tablename__ = "tier_pricings"

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
    countries: Mapped[list] = mapped_column(
        JSONType,
        default=list,
        comment="ISO country codes the rule applies to"
    )
    pricing_type: Mapped[str] = mapped_column(
        String(20),
        default="wholesale",
        comment="Free-form label, e.g. wholesale"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    products: Mapped[List["TierPricingProduct"]] = relationship(
        "TierPricingProduct",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    steps: Mapped[List["TierPricingStep"]] = relationship(
        "TierPricingStep",
        cascade="all, delete-orphan",
        order_by="TierPricingStep.from_units",
        lazy="selectin"
    )
    clients: Mapped[List["TierPricingClient"]] = relationship(
        "TierPricingClient",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    @property
    def product_ids(self) -> set:
        """Product and variation ids covered by the rule."""
        ids = set()
        for item in self.products:
            ids.add(item.product_id)
            if item.variation_id is not None:
                ids.add(item.variation_id)
        return ids

    @property
    def targeted_client_ids(self) -> set:
        return {c.client_id for c in self.clients}

    def __repr__(self) -> str:
        return f"<TierPricing(name='{self.name}', active={self.is_active})>"


class TierPricingProduct(Base):
    __tablename__ = "tier_pricing_products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    tier_pricing_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("tier_pricings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    variation_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)


class TierPricingStep(Base):
    """Inclusive unit range ``[from_units, to_units]`` priced at ``price``."""
    __tablename__ = "tier_pricing_steps"
    __table_args__ = (
        CheckConstraint("from_units <= to_units", name="ck_tier_step_range"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    tier_pricing_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("tier_pricings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    from_units: Mapped[int] = mapped_column(Integer, nullable=False)
    to_units: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)


class TierPricingClient(Base):
    __tablename__ = "tier_pricing_clients"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    tier_pricing_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("tier_pricings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False
    )
