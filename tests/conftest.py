"""
Shared fixtures.

Every test gets a fresh in-memory SQLite database: tables are created on
setup and the single pooled connection is dropped on teardown.
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ENCRYPTION_SECRET"] = "test-secret"
os.environ.pop("REDIS_URL", None)
os.environ.pop("PAYMENT_GATEWAY_URL", None)
os.environ.pop("NOTIFICATION_WEBHOOK_URL", None)

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app import models  # noqa: F401
from app.api.deps import get_price_cache
from app.database import Base, async_session_factory, engine
from app.main import app
from app.models import (
    AffiliateLevel,
    AffiliateProduct,
    Cart,
    CartLine,
    Client,
    Product,
    ProductType,
    ProductVariation,
    SharedProductMapping,
    SharedVariationMapping,
    TierPricing,
    TierPricingClient,
    TierPricingProduct,
    TierPricingStep,
    Warehouse,
    WarehouseStock,
)
from app.models.affiliate import PointsAction
from app.services.affiliate_points_service import AffiliatePointsService
from app.services.cache_service import CacheService, InMemoryCache
from app.services.cart_service import compute_cart_hash
from app.services.encryption_service import EncryptionService
from app.services.notification_service import NotificationService
from app.services.order_service import OrderService


class RecordingNotifier(NotificationService):
    """Keeps every notification type it was asked to send."""

    def __init__(self):
        super().__init__(webhook_url="")
        self.sent = []

    async def send_notification(self, organization_id, notification_type, channels, variables, **kwargs):
        self.sent.append(notification_type)
        return await super().send_notification(organization_id, notification_type, channels, variables, **kwargs)


class Seed:
    """Writes catalog fixtures straight through the ORM."""

    def __init__(self, db):
        self.db = db
        self._clock = datetime.now(timezone.utc) - timedelta(hours=1)

    def tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    async def _add(self, obj):
        self.db.add(obj)
        await self.db.flush()
        return obj

    async def commit(self):
        await self.db.commit()

    async def level(self, org, name, required_points) -> AffiliateLevel:
        return await self._add(AffiliateLevel(
            organization_id=org, name=name, required_points=Decimal(str(required_points)),
        ))

    async def client(self, org, username="alice", user_id=None, level=None, country="US") -> Client:
        return await self._add(Client(
            organization_id=org,
            username=username,
            user_id=user_id,
            level_id=level.id if level else None,
            country=country,
        ))

    async def product(
        self,
        org,
        prices: Optional[dict] = None,
        sale: Optional[dict] = None,
        name="Widget",
        manage_stock=False,
        allow_backorders=False,
        variable=False,
    ) -> Product:
        return await self._add(Product(
            organization_id=org,
            name=name,
            product_type=ProductType.VARIABLE.value if variable else ProductType.SIMPLE.value,
            regular_price=prices,
            sale_price=sale,
            manage_stock=manage_stock,
            allow_backorders=allow_backorders,
            is_active=True,
        ))

    async def variation(self, product, prices: Optional[dict] = None, sale=None, name="Large") -> ProductVariation:
        return await self._add(ProductVariation(
            product_id=product.id, name=name, regular_price=prices, sale_price=sale,
        ))

    async def affiliate_product(
        self,
        org,
        regular: Optional[dict] = None,
        sale: Optional[dict] = None,
        min_level=None,
        manage_stock=False,
        name="Gift mug",
    ) -> AffiliateProduct:
        return await self._add(AffiliateProduct(
            organization_id=org,
            name=name,
            regular_points=regular,
            sale_points=sale,
            min_level_id=min_level.id if min_level else None,
            manage_stock=manage_stock,
        ))

    async def warehouse(self, org, name="Main") -> Warehouse:
        return await self._add(Warehouse(organization_id=org, name=name))

    async def stock(
        self,
        org,
        quantity,
        product=None,
        affiliate_product=None,
        variation=None,
        warehouse=None,
        country="US",
    ) -> WarehouseStock:
        return await self._add(WarehouseStock(
            organization_id=org,
            warehouse_id=warehouse.id if warehouse else None,
            product_id=product.id if product else None,
            affiliate_product_id=affiliate_product.id if affiliate_product else None,
            variation_id=variation.id if variation else None,
            country=country,
            quantity=quantity,
            created_at=self.tick(),
        ))

    async def tier_rule(
        self,
        org,
        products: Iterable,
        steps: Iterable,
        countries=("US",),
        clients=(),
        is_active=True,
        name="Wholesale",
    ) -> TierPricing:
        items = []
        for item in products:
            if isinstance(item, tuple):
                items.append(TierPricingProduct(product_id=item[0].id, variation_id=item[1].id))
            else:
                items.append(TierPricingProduct(product_id=item.id))
        return await self._add(TierPricing(
            organization_id=org,
            name=name,
            countries=list(countries),
            pricing_type="wholesale",
            is_active=is_active,
            created_at=self.tick(),
            products=items,
            steps=[
                TierPricingStep(from_units=lo, to_units=hi, price=Decimal(str(price)))
                for lo, hi, price in steps
            ],
            clients=[TierPricingClient(client_id=c.id) for c in clients],
        ))

    async def cart(self, org, client, lines=(), affiliate_lines=(), country="US", status=True) -> Cart:
        """``lines``: (product, quantity, unit_price[, variation]); ``affiliate_lines``: (product, quantity, points)."""
        cart_lines = []
        for line in lines:
            product, quantity, unit_price = line[:3]
            variation = line[3] if len(line) > 3 else None
            cart_lines.append(CartLine(
                product_id=product.id,
                variation_id=variation.id if variation else None,
                quantity=quantity,
                unit_price=Decimal(str(unit_price)),
                created_at=self.tick(),
            ))
        for affiliate_product, quantity, points in affiliate_lines:
            cart_lines.append(CartLine(
                affiliate_product_id=affiliate_product.id,
                quantity=quantity,
                unit_price=Decimal(str(points)),
                created_at=self.tick(),
            ))
        cart = await self._add(Cart(
            organization_id=org,
            client_id=client.id,
            country=country,
            channel="store",
            status=status,
            lines=cart_lines,
        ))
        cart.cart_updated_hash = compute_cart_hash(cart.lines)
        await self.db.flush()
        return cart

    async def mapping(self, source, target) -> SharedProductMapping:
        return await self._add(SharedProductMapping(
            source_product_id=source.id, target_product_id=target.id, created_at=self.tick(),
        ))

    async def variation_mapping(self, source, target, source_variation, target_variation) -> SharedVariationMapping:
        return await self._add(SharedVariationMapping(
            source_product_id=source.id,
            target_product_id=target.id,
            source_variation_id=source_variation.id,
            target_variation_id=target_variation.id,
        ))

    async def points(self, org, client, amount, action=PointsAction.MANUAL_ADJUSTMENT.value):
        return await AffiliatePointsService(self.db).record(client.id, org, Decimal(str(amount)), action)


@pytest_asyncio.fixture(autouse=True)
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def db(database):
    async with async_session_factory() as session:
        yield session


@pytest.fixture
def seed(db) -> Seed:
    return Seed(db)


@pytest.fixture
def cache() -> CacheService:
    return CacheService(InMemoryCache())


@pytest.fixture
def encryption() -> EncryptionService:
    return EncryptionService("test-secret")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_order_service(cache, encryption, notifier):
    def factory(db, **kwargs) -> OrderService:
        options = dict(
            cache=cache,
            session_factory=async_session_factory,
            notifier=notifier,
            encryption=encryption,
        )
        options.update(kwargs)
        return OrderService(db, **options)
    return factory


@pytest_asyncio.fixture
async def api(database, cache):
    app.dependency_overrides[get_price_cache] = lambda: cache
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
