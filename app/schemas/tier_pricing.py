from pydantic import Field, model_validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from app.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


def _normalize_client_alias(data):
    """Accept the legacy ``customers`` name for targeted clients."""
    if isinstance(data, dict) and "customers" in data:
        data = dict(data)
        customers = data.pop("customers")
        if data.get("clients") is None:
            data["clients"] = customers
    return data


# ==================== CHILD SCHEMAS ====================

class TierProductInput(BaseCreateSchema):
    product_id: uuid.UUID
    variation_id: Optional[uuid.UUID] = None


class TierStepInput(BaseCreateSchema):
    from_units: int = Field(..., ge=1)
    to_units: int = Field(..., ge=1)
    price: Decimal = Field(..., ge=0)


class TierProductResponse(BaseResponseSchema):
    product_id: uuid.UUID
    variation_id: Optional[uuid.UUID] = None


class TierStepResponse(BaseResponseSchema):
    from_units: int
    to_units: int
    price: Decimal


# ==================== RULE SCHEMAS ====================

class TierPricingCreate(BaseCreateSchema):
    """Create schema. ``customers`` is accepted as an alias of ``clients``."""
    name: str = Field(..., min_length=1, max_length=255)
    countries: List[str] = Field(..., min_length=1)
    pricing_type: str = "wholesale"
    is_active: bool = True
    products: List[TierProductInput] = Field(..., min_length=1)
    steps: List[TierStepInput] = Field(..., min_length=1)
    clients: List[uuid.UUID] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def normalize_clients(cls, data):
        return _normalize_client_alias(data)


class TierPricingUpdate(BaseUpdateSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    countries: Optional[List[str]] = None
    pricing_type: Optional[str] = None
    is_active: Optional[bool] = None
    products: Optional[List[TierProductInput]] = None
    steps: Optional[List[TierStepInput]] = None
    clients: Optional[List[uuid.UUID]] = None

    @model_validator(mode="before")
    @classmethod
    def normalize_clients(cls, data):
        return _normalize_client_alias(data)


class TierPricingStatusUpdate(BaseUpdateSchema):
    is_active: bool


class TierPricingResponse(BaseResponseSchema):
    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    countries: List[str]
    pricing_type: str
    is_active: bool
    products: List[TierProductResponse] = []
    steps: List[TierStepResponse] = []
    clients: List[uuid.UUID] = []
    created_at: datetime
