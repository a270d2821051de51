"""
Affiliate points economy models.

Points price tables are nested JSON keyed by level id (or ``"default"``)
then country: ``{"default": {"US": 100}, "<level-id>": {"US": 80}}``.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Text, Boolean, DateTime, ForeignKey, Index, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, JSONType


DEFAULT_LEVEL_KEY = "default"


class PointsAction(str, Enum):
    """Action tags written to the points log."""
    REDEEM = "redeem"
    REFUND = "refund"
    PURCHASE_AFFILIATE = "purchase_affiliate"
    REFUND_AFFILIATE = "refund_affiliate"
    REFERRAL_BONUS = "referral_bonus"
    REVIEW_BONUS = "review_bonus"
    SPENDING_BONUS = "spending_bonus"
    GROUP_JOIN = "group_join"
    MANUAL_ADJUSTMENT = "manual_adjustment"


# Legacy ``reason`` values accepted at the API boundary
LEGACY_REASON_ACTIONS = {
    "referral": PointsAction.REFERRAL_BONUS.value,
    "review": PointsAction.REVIEW_BONUS.value,
    "spending": PointsAction.SPENDING_BONUS.value,
    "group": PointsAction.GROUP_JOIN.value,
}


class AffiliateLevel(Base):
    """Customer loyalty level ordered by its required points threshold."""
    __tablename__ = "affiliate_levels"

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
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    required_points: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0"),
        nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<AffiliateLevel(name='{self.name}', required={self.required_points})>"


class AffiliateProduct(Base):
    """Catalog entry priced in points. Never priced in money."""
    __tablename__ = "affiliate_products"

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

    regular_points: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    sale_points: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    min_level_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("affiliate_levels.id", ondelete="SET NULL"),
        nullable=True,
        comment="Minimum level a client needs to buy this product"
    )

    manage_stock: Mapped[bool] = mapped_column(Boolean, default=False)
    allow_backorders: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<AffiliateProduct(name='{self.name}')>"


class AffiliatePointBalance(Base):
    """
    Running points balance per (client, organization).

    Only ever updated by accumulation so concurrent writers stay correct.
    """
    __tablename__ = "affiliate_point_balances"

    client_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("clients.id", ondelete="CASCADE"),
        primary_key=True
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True
    )
    points_current: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0"),
        nullable=False
    )
    points_spent: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0"),
        nullable=False,
        comment="Lifetime points spent"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )


class AffiliatePointLog(Base):
    """Append-only ledger row; ``points`` is the signed delta on the current balance."""
    __tablename__ = "affiliate_point_logs"
    __table_args__ = (
        Index("ix_point_logs_client_org", "client_id", "organization_id"),
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
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False
    )
    points: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_client_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        nullable=True,
        comment="Referrer or other client that triggered the grant"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True
    )

    def __repr__(self) -> str:
        return f"<AffiliatePointLog(action='{self.action}', points={self.points})>"
