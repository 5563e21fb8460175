from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from cardshop.core.db import init_models
from cardshop.main import create_app
from cardshop.models.order import Order, OrderStatus
from cardshop.services import expiry
from cardshop.services.expiry import close_expired_orders
from cardshop.services.order_state import transition_order
from cardshop.services.reservations import OrderRequest, count_unsold, create_order

TIMEOUT = 15 * 60


@pytest.fixture
def reserve(db):
    async def _reserve(product_id, quantity=1):
        reserved = await create_order(
            db,
            OrderRequest(product_id=product_id, email="b@x.io", password="secret123", quantity=quantity),
            max_order_amount=Decimal("1000"),
            max_pending_per_ip=6,
        )
        return reserved.order_id

    return _reserve


def _later(minutes=30):
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


async def _status(db, order_id):
    res = await db.execute(
        select(Order.status).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    return res.scalar_one()


async def test_fresh_orders_are_left_alone(db, seed_product, reserve):
    pid = await seed_product(cards=2)
    order_id = await reserve(pid)

    report = await close_expired_orders(db, timeout_seconds=TIMEOUT)

    assert (report.closed, report.total) == (0, 0)
    assert await _status(db, order_id) == OrderStatus.PENDING


async def test_expired_orders_are_closed_and_stock_returns(db, seed_product, reserve):
    pid = await seed_product(cards=3)
    a = await reserve(pid)
    b = await reserve(pid, quantity=2)
    assert await count_unsold(db, pid) == 0

    report = await close_expired_orders(db, timeout_seconds=TIMEOUT, now=_later())

    assert (report.closed, report.total) == (2, 2)
    assert await _status(db, a) == OrderStatus.CLOSED
    assert await _status(db, b) == OrderStatus.CLOSED
    assert await count_unsold(db, pid) == 3


async def test_order_paid_during_sweep_stays_completed(db, seed_product, reserve, monkeypatch):
    pid = await seed_product(cards=2)
    paid = await reserve(pid)
    unpaid = await reserve(pid)

    real_transition = expiry.transition_order

    async def paid_just_before(db_, *, order_id, target, now=None):
        if order_id == paid:
            await transition_order(db_, order_id=order_id, target=OrderStatus.COMPLETED)
        return await real_transition(db_, order_id=order_id, target=target, now=now)

    monkeypatch.setattr(expiry, "transition_order", paid_just_before)

    report = await close_expired_orders(db, timeout_seconds=TIMEOUT, now=_later())

    assert (report.closed, report.total) == (1, 2)
    assert await _status(db, paid) == OrderStatus.COMPLETED
    assert await _status(db, unpaid) == OrderStatus.CLOSED


async def test_one_failing_order_does_not_stop_the_sweep(db, seed_product, reserve, monkeypatch):
    pid = await seed_product(cards=2)
    broken = await reserve(pid)
    fine = await reserve(pid)

    real_transition = expiry.transition_order

    async def flaky(db_, *, order_id, target, now=None):
        if order_id == broken:
            raise RuntimeError("database hiccup")
        return await real_transition(db_, order_id=order_id, target=target, now=now)

    monkeypatch.setattr(expiry, "transition_order", flaky)

    report = await close_expired_orders(db, timeout_seconds=TIMEOUT, now=_later())

    assert (report.closed, report.total) == (1, 2)
    assert await _status(db, broken) == OrderStatus.PENDING
    assert await _status(db, fine) == OrderStatus.CLOSED


async def test_cron_endpoint_requires_secret(client, settings):
    res = await client.get("/cron/close-expired-orders")
    assert res.status_code == 401
    assert res.json() == {"error": "Unauthorized"}

    res = await client.get("/cron/close-expired-orders", headers={"Authorization": "Bearer wrong"})
    assert res.status_code == 401

    res = await client.get("/cron/close-expired-orders", headers={"Authorization": f"Bearer {settings.CRON_SECRET}"})
    assert res.status_code == 200
    assert res.json() == {"closed": 0, "total": 0}


async def test_cron_endpoint_fails_closed_without_configured_secret(settings):
    app = create_app(settings.model_copy(update={"CRON_SECRET": None}))
    await init_models(app.state.engine)
    try:
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            res = await c.get("/cron/close-expired-orders", headers={"Authorization": "Bearer "})
            assert res.status_code == 401
            res = await c.get("/cron/close-expired-orders", headers={"Authorization": "Bearer None"})
            assert res.status_code == 401
    finally:
        await app.state.engine.dispose()
