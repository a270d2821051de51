# Services module
from app.services.catalog_service import CatalogService
from app.services.pricing_service import PricingService
from app.services.tier_pricing_service import TierPricingService
from app.services.inventory_service import InventoryService
from app.services.affiliate_points_service import AffiliatePointsService
from app.services.cart_service import CartService
from app.services.order_sequence_service import OrderSequenceService
from app.services.order_service import OrderService
from app.services.fanout_service import FanOutService

# Integrations
from app.services.cache_service import CacheService, get_cache
from app.services.notification_service import NotificationService
from app.services.payment_gateway_service import PaymentGatewayService
from app.services.encryption_service import EncryptionService, get_encryption_service

__all__ = [
    "CatalogService",
    "PricingService",
    "TierPricingService",
    "InventoryService",
    "AffiliatePointsService",
    "CartService",
    "OrderSequenceService",
    "OrderService",
    "FanOutService",
    # Integrations
    "CacheService",
    "get_cache",
    "NotificationService",
    "PaymentGatewayService",
    "EncryptionService",
    "get_encryption_service",
]
