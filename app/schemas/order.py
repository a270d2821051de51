from pydantic import Field
from typing import Optional, List, Any
from datetime import datetime
from decimal import Decimal
import uuid

from app.models.order import OrderStatus
from app.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


# ==================== COMMIT ====================

class OrderCommit(BaseCreateSchema):
    """Commit a cart into an order. Client defaults to the caller's X-Client-ID."""
    cart_id: uuid.UUID
    client_id: Optional[uuid.UUID] = None
    payment_method: Optional[str] = None
    shipping_total: Decimal = Field(Decimal("0"), ge=0)
    shipping_service: Optional[str] = None
    shipping_method: Optional[str] = None
    discount_total: Decimal = Field(Decimal("0"), ge=0)
    coupon_code: Optional[str] = None
    address: Optional[str] = None


# ==================== UPDATES ====================

class OrderStatusUpdate(BaseUpdateSchema):
    status: OrderStatus


class OrderUpdate(BaseUpdateSchema):
    """Only operational fields can change after commit."""
    tracking_number: Optional[str] = None
    address: Optional[str] = None
    meta_event: Optional[dict[str, Any]] = None


class PaymentMethodUpdate(BaseUpdateSchema):
    payment_method: str = Field(..., min_length=1, max_length=50)
    pending_invoice_id: Optional[str] = None


# ==================== RESPONSES ====================

class OrderResponse(BaseResponseSchema):
    id: uuid.UUID
    organization_id: uuid.UUID
    order_key: int
    order_number: str
    client_id: uuid.UUID
    cart_id: uuid.UUID
    status: str
    country: str
    cart_hash: str
    subtotal: Decimal
    shipping_total: Decimal
    discount_total: Decimal
    total_amount: Decimal
    points_redeemed: Decimal
    coupon_code: Optional[str] = None
    payment_method: Optional[str] = None
    shipping_service: Optional[str] = None
    shipping_method: Optional[str] = None
    tracking_number: Optional[str] = None
    parent_order_id: Optional[uuid.UUID] = None
    fanout_status: str
    fanout_error: Optional[str] = None
    created_at: datetime


class OrderDetailResponse(OrderResponse):
    """Adds the decrypted address and the meta event log."""
    address: Optional[str] = None
    order_meta: List[dict] = []


class OrderCommitResponse(OrderDetailResponse):
    upstream_order_ids: List[uuid.UUID] = []


class OrderListResponse(BaseResponseSchema):
    items: List[OrderResponse]
    total: int
    page: int
    size: int
