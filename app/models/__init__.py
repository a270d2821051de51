"""ORM models. Importing this package registers every table on Base.metadata."""
from app.models.client import Client
from app.models.product import Product, ProductVariation, ProductType
from app.models.affiliate import (
    AffiliateLevel,
    AffiliateProduct,
    AffiliatePointBalance,
    AffiliatePointLog,
    PointsAction,
)
from app.models.tier_pricing import TierPricing, TierPricingProduct, TierPricingStep, TierPricingClient
from app.models.warehouse import Warehouse, WarehouseStock
from app.models.cart import Cart, CartLine
from app.models.order import Order, OrderStatus, FanOutStatus
from app.models.order_sequence import OrderSequence
from app.models.shared_product import SharedProductMapping, SharedVariationMapping

__all__ = [
    "Client",
    "Product",
    "ProductVariation",
    "ProductType",
    "AffiliateLevel",
    "AffiliateProduct",
    "AffiliatePointBalance",
    "AffiliatePointLog",
    "PointsAction",
    "TierPricing",
    "TierPricingProduct",
    "TierPricingStep",
    "TierPricingClient",
    "Warehouse",
    "WarehouseStock",
    "Cart",
    "CartLine",
    "Order",
    "OrderStatus",
    "FanOutStatus",
    "OrderSequence",
    "SharedProductMapping",
    "SharedVariationMapping",
]
