from typing import Optional
import uuid

from fastapi import APIRouter, Query

from app.api.deps import DB, Caller, PriceCache
from app.core.exceptions import NotFoundError
from app.schemas.pricing import PriceQuoteResponse
from app.services.catalog_service import CatalogService
from app.services.pricing_service import PricingService
from app.services.tier_pricing_service import TierPricingService


router = APIRouter(tags=["Pricing"])


@router.get("/quote", response_model=PriceQuoteResponse)
async def get_price_quote(
    db: DB,
    caller: Caller,
    cache: PriceCache,
    product_id: uuid.UUID = Query(...),
    country: str = Query(..., min_length=2, max_length=2),
    variation_id: Optional[uuid.UUID] = Query(None),
    quantity: int = Query(1, ge=1),
):
    """
    Quote a unit price for the caller.

    With X-Client-ID the client's affiliate level applies and any volume
    rule targeting the client is considered for ``quantity`` units.
    """
    level_id = None
    if caller.client_id is not None:
        client = await CatalogService(db).get_client(caller.organization_id, caller.client_id)
        if client is None:
            raise NotFoundError(f"Client {caller.client_id} not found")
        level_id = client.level_id

    quote = await PricingService(db, cache=cache).resolve_price(
        caller.organization_id, product_id, variation_id, country, level_id
    )

    tier_price = None
    if not quote.is_points:
        tier_price = await TierPricingService(db).tier_price(
            caller.organization_id, country, product_id, variation_id, caller.client_id, quantity
        )

    return PriceQuoteResponse(
        product_id=product_id,
        variation_id=variation_id,
        country=country.upper(),
        unit_price=quote.unit_price,
        is_points=quote.is_points,
        quantity=quantity,
        tier_price=tier_price,
    )
