from pydantic import BaseModel, Field
from typing import Optional
from decimal import Decimal
import uuid


class PriceQuoteResponse(BaseModel):
    """Resolved unit price; ``tier_price`` is set when a volume rule overrides it."""
    product_id: uuid.UUID
    variation_id: Optional[uuid.UUID] = None
    country: str
    unit_price: Decimal
    is_points: bool
    quantity: int = Field(1, ge=1)
    tier_price: Optional[Decimal] = None
