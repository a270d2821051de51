from fastapi import APIRouter

from app.api.v1.endpoints import (
    # Catalog pricing
    pricing,
    tier_pricing,
    # Storefront
    carts,
    orders,
    # Loyalty
    affiliate_points,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Pricing ====================
api_router.include_router(
    pricing.router,
    prefix="/pricing",
    tags=["Pricing"]
)

api_router.include_router(
    tier_pricing.router,
    prefix="/tier-pricing",
    tags=["Tier Pricing"]
)

# ==================== Carts & Orders ====================
api_router.include_router(
    carts.router,
    prefix="/carts",
    tags=["Carts"]
)

api_router.include_router(
    orders.router,
    prefix="/orders",
    tags=["Orders"]
)

# ==================== Affiliate Points ====================
api_router.include_router(
    affiliate_points.router,
    prefix="/affiliate-points",
    tags=["Affiliate Points"]
)
