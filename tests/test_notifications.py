from decimal import Decimal

from sqlalchemy import select

from cardshop.core.tasks import BackgroundTaskGroup
from cardshop.models.order import OrderStatus
from cardshop.models.restock_subscription import RestockSubscription, SubscriptionStatus
from cardshop.services.notifications import Notifier, notify_restock_subscribers, send_completion_email
from cardshop.services.order_state import transition_order
from cardshop.services.reservations import OrderRequest, create_order


class FakeMailer:
    def __init__(self, ok=True):
        self.ok = ok
        self.sent = []

    @property
    def enabled(self):
        return True

    async def send(self, *, to_email, subject, body):
        self.sent.append({"to": to_email, "subject": subject, "body": body})
        return self.ok


async def _reserve(db, product_id, quantity=2):
    reserved = await create_order(
        db,
        OrderRequest(product_id=product_id, email="Buyer@Example.com", password="secret123", quantity=quantity),
        max_order_amount=Decimal("1000"),
        max_pending_per_ip=6,
    )
    return reserved


async def test_completion_email_lists_sold_cards(db, settings, seed_product):
    pid = await seed_product(cards=3)
    reserved = await _reserve(db, pid)
    mailer = FakeMailer()

    # not completed yet: nothing to send
    assert await send_completion_email(db, mailer, settings, reserved.order_id) is False
    assert mailer.sent == []

    await transition_order(db, order_id=reserved.order_id, target=OrderStatus.COMPLETED)
    assert await send_completion_email(db, mailer, settings, reserved.order_id) is True

    (mail,) = mailer.sent
    assert mail["to"] == "buyer@example.com"
    assert reserved.order_no in mail["subject"]
    assert "steam-key-CARD-0" in mail["body"]
    assert "steam-key-CARD-1" in mail["body"]
    assert "steam-key-CARD-2" not in mail["body"]


async def test_failed_send_is_reported_not_raised(db, settings, seed_product):
    pid = await seed_product(cards=1)
    reserved = await _reserve(db, pid, quantity=1)
    await transition_order(db, order_id=reserved.order_id, target=OrderStatus.COMPLETED)

    assert await send_completion_email(db, FakeMailer(ok=False), settings, reserved.order_id) is False


async def test_notifier_runs_in_background(app, settings, seed_product):
    pid = await seed_product(cards=1)
    async with app.state.sessionmaker() as db:
        reserved = await _reserve(db, pid, quantity=1)
        await transition_order(db, order_id=reserved.order_id, target=OrderStatus.COMPLETED)

    tasks = BackgroundTaskGroup()
    mailer = FakeMailer()
    notifier = Notifier(tasks, app.state.sessionmaker, mailer, settings)

    notifier.order_completed(reserved.order_id)
    assert tasks.pending == 1

    await tasks.drain()
    assert tasks.pending == 0
    assert len(mailer.sent) == 1


async def test_restock_subscription_flow(client, db, settings, seed_product):
    empty = await seed_product(cards=0, slug="sold-out")
    stocked = await seed_product(cards=1, slug="in-stock")

    res = await client.post("/restock-subscriptions", json={"product_id": stocked, "email": "fan@example.com"})
    assert res.status_code == 400
    assert res.json() == {"error": "Product is in stock"}

    res = await client.post("/restock-subscriptions", json={"product_id": 9999, "email": "fan@example.com"})
    assert res.status_code == 404

    res = await client.post("/restock-subscriptions", json={"product_id": empty, "email": "Fan@Example.com"})
    assert res.status_code == 200
    assert res.json() == {"ok": True, "subscribed": True}

    status = await client.get("/restock-subscriptions/status", params={"product_id": empty, "email": "fan@example.com"})
    assert status.json() == {"subscribed": True}

    mailer = FakeMailer()
    assert await notify_restock_subscribers(db, mailer, settings, empty) == 1
    assert [m["to"] for m in mailer.sent] == ["fan@example.com"]

    sub = (await db.execute(select(RestockSubscription).where(RestockSubscription.product_id == empty))).scalar_one()
    assert sub.status == SubscriptionStatus.NOTIFIED
    assert sub.notified_at is not None

    status = await client.get("/restock-subscriptions/status", params={"product_id": empty, "email": "fan@example.com"})
    assert status.json() == {"subscribed": False}

    # a second run has nobody left to notify
    assert await notify_restock_subscribers(db, mailer, settings, empty) == 0
