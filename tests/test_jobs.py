"""
Tests — Background Jobs
========================
Fan-out resumption and price cache cleanup as run by the scheduler.
"""

import uuid

from sqlalchemy import select

from app.database import async_session_factory
from app.jobs.cache_jobs import cleanup_price_cache
from app.jobs.order_jobs import resume_pending_fanouts
from app.jobs.scheduler import get_job_status, run_job
from app.models import Order
from app.models.order import FanOutStatus
from app.schemas.order import OrderCommit
from app.services.fanout_service import FanOutService


ORG = uuid.UUID("00000000-0000-0000-0000-0000000000f1")
SUPPLIER = uuid.UUID("00000000-0000-0000-0000-0000000000f2")


class TestResumePendingFanouts:
    async def test_resumes_root_orders_left_pending(self, db, seed, make_order_service):
        lamp = await seed.product(ORG, prices={"US": "30.00"})
        buyer = await seed.client(ORG, user_id="buyer-1")
        cart = await seed.cart(ORG, buyer, lines=[(lamp, 1, "30.00")])
        result = await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=cart.id), client_id=buyer.id)
        root_id = result.order.id

        # Mapping appears after commit, as if the process stopped before fan-out ran
        wholesale = await seed.product(SUPPLIER, prices={"US": "20.00"})
        await seed.mapping(wholesale, lamp)
        result.order.fanout_status = FanOutStatus.PENDING.value
        await db.commit()

        summary = await resume_pending_fanouts(
            older_than_minutes=0,
            fanout_service=FanOutService(session_factory=async_session_factory),
        )

        assert summary == {"found": 1, "completed": 1, "failed": 0}
        upstream = (await db.execute(
            select(Order).where(Order.organization_id == SUPPLIER)
        )).scalars().all()
        assert [o.root_order_id for o in upstream] == [root_id]
        root = await db.get(Order, root_id, populate_existing=True)
        assert root.fanout_status == FanOutStatus.COMPLETED.value

    async def test_recent_orders_are_left_alone(self, db, seed, make_order_service):
        lamp = await seed.product(ORG, prices={"US": "30.00"})
        buyer = await seed.client(ORG)
        cart = await seed.cart(ORG, buyer, lines=[(lamp, 1, "30.00")])
        result = await make_order_service(db).commit_order(ORG, OrderCommit(cart_id=cart.id), client_id=buyer.id)
        result.order.fanout_status = FanOutStatus.PENDING.value
        await db.commit()

        summary = await resume_pending_fanouts(older_than_minutes=60)

        assert summary == {"found": 0, "completed": 0, "failed": 0}

    async def test_nothing_pending(self):
        assert await resume_pending_fanouts(older_than_minutes=0) == {"found": 0, "completed": 0, "failed": 0}


class TestCacheJobs:
    async def test_cleanup_returns_removed_count(self):
        removed = await cleanup_price_cache()
        assert isinstance(removed, int)
        assert removed >= 0


class TestScheduler:
    async def test_run_job_by_name(self):
        await run_job("cleanup_price_cache")

    def test_no_jobs_before_start(self):
        assert get_job_status() == []
