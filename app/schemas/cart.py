from pydantic import Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from app.schemas.base import BaseResponseSchema, BaseCreateSchema


class CartCreate(BaseCreateSchema):
    """Client defaults to the caller's X-Client-ID."""
    client_id: Optional[uuid.UUID] = None
    country: str = Field(..., min_length=2, max_length=2)
    channel: str = "store"


class CartProductAdd(BaseCreateSchema):
    product_id: uuid.UUID = Field(..., alias="productId")
    variation_id: Optional[uuid.UUID] = Field(None, alias="variationId")
    quantity: int = Field(1, ge=1)


class CartProductUpdate(BaseCreateSchema):
    product_id: uuid.UUID = Field(..., alias="productId")
    variation_id: Optional[uuid.UUID] = Field(None, alias="variationId")
    quantity: int = Field(..., ge=0)


class CartLineResponse(BaseResponseSchema):
    id: uuid.UUID
    product_id: Optional[uuid.UUID] = None
    affiliate_product_id: Optional[uuid.UUID] = None
    variation_id: Optional[uuid.UUID] = None
    quantity: int
    unit_price: Decimal
    is_affiliate: bool
    line_total: Decimal


class CartResponse(BaseResponseSchema):
    id: uuid.UUID
    organization_id: uuid.UUID
    client_id: uuid.UUID
    country: str
    channel: str
    status: bool
    cart_hash: Optional[str] = None
    cart_updated_hash: Optional[str] = None
    lines: List[CartLineResponse] = []
    created_at: datetime
