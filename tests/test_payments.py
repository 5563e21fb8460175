from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from cardshop.models.card import Card, CardStatus
from cardshop.models.order import Order, OrderStatus
from cardshop.services import payments
from cardshop.services.order_state import transition_order
from cardshop.services.payments import format_amount, handle_payment_notify
from cardshop.services.reservations import OrderRequest, create_order


class FakeVerifier:
    def __init__(self, ok=True):
        self.ok = ok
        self.configured = True

    def verify_notify_signature(self, payload):
        return self.ok


@pytest.fixture
async def pending_order(db, seed_product):
    pid = await seed_product(price="50.00", cards=3)
    reserved = await create_order(
        db,
        OrderRequest(product_id=pid, email="b@x.io", password="secret123", quantity=2),
        max_order_amount=Decimal("1000"),
        max_pending_per_ip=6,
    )
    return reserved


def _notify(order_no, amount="100.00", trade_status="TRADE_SUCCESS"):
    return {
        "out_trade_no": order_no,
        "total_amount": amount,
        "trade_status": trade_status,
        "trade_no": "2026101722001400000000000001",
        "sign": "c2lnbmF0dXJl",
        "sign_type": "RSA2",
    }


async def _order(db, order_id):
    res = await db.execute(select(Order).where(Order.id == order_id).execution_options(populate_existing=True))
    return res.scalar_one()


def test_format_amount():
    assert format_amount(Decimal("100")) == "100.00"
    assert format_amount(Decimal("0.5")) == "0.50"


async def test_paid_notify_completes_once(db, pending_order, listener):
    payload = _notify(pending_order.order_no)

    assert await handle_payment_notify(db, payload, verifier=FakeVerifier(), listener=listener) is True

    order = await _order(db, pending_order.order_id)
    assert order.status == OrderStatus.COMPLETED
    assert order.paid_at is not None
    assert listener.completed == [pending_order.order_id]

    # provider redelivery: acknowledged, nothing re-run
    assert await handle_payment_notify(db, payload, verifier=FakeVerifier(), listener=listener) is True
    assert listener.completed == [pending_order.order_id]

    cards = (await db.execute(select(Card.status).where(Card.order_id == pending_order.order_id))).scalars().all()
    assert sorted(cards) == [CardStatus.SOLD, CardStatus.SOLD]


async def test_amount_mismatch_is_rejected(db, pending_order, listener):
    payload = _notify(pending_order.order_no, amount="99.99")

    assert await handle_payment_notify(db, payload, verifier=FakeVerifier(), listener=listener) is False

    order = await _order(db, pending_order.order_id)
    assert order.status == OrderStatus.PENDING
    assert listener.completed == []


async def test_bad_signature_is_rejected(db, pending_order, listener):
    payload = _notify(pending_order.order_no)

    assert await handle_payment_notify(db, payload, verifier=FakeVerifier(ok=False), listener=listener) is False
    assert (await _order(db, pending_order.order_id)).status == OrderStatus.PENDING


async def test_unknown_order_and_missing_fields(db, listener):
    assert await handle_payment_notify(db, _notify("FAKNOPE"), verifier=FakeVerifier(), listener=listener) is False
    assert await handle_payment_notify(db, {"sign": "x"}, verifier=FakeVerifier(), listener=listener) is False


async def test_non_success_trade_status_is_acknowledged(db, pending_order, listener):
    payload = _notify(pending_order.order_no, trade_status="WAIT_BUYER_PAY")

    assert await handle_payment_notify(db, payload, verifier=FakeVerifier(), listener=listener) is True
    assert (await _order(db, pending_order.order_id)).status == OrderStatus.PENDING


async def test_paid_notify_after_expiry_leaves_order_closed(db, pending_order, listener):
    await transition_order(db, order_id=pending_order.order_id, target=OrderStatus.CLOSED)

    payload = _notify(pending_order.order_no)
    assert await handle_payment_notify(db, payload, verifier=FakeVerifier(), listener=listener) is True

    assert (await _order(db, pending_order.order_id)).status == OrderStatus.CLOSED
    assert listener.completed == []


async def test_notify_endpoint_speaks_plain_text(app, client, pending_order):
    app.state.payment_gateway = FakeVerifier()

    res = await client.post("/payment/alipay/notify", data=_notify(pending_order.order_no))
    assert res.status_code == 200
    assert res.text == "success"

    res = await client.post("/payment/alipay/notify", data=_notify(pending_order.order_no, amount="1.00"))
    assert res.status_code == 400
    assert res.text == "failure"


async def test_create_payment_requires_configured_provider(client, pending_order):
    res = await client.post("/payment/alipay/create", json={"order_no": pending_order.order_no})
    assert res.status_code == 503


async def test_notify_store_failure_still_answers_plain_text(app, client, db, pending_order, monkeypatch):
    app.state.payment_gateway = FakeVerifier()

    async def locked(*args, **kwargs):
        raise OperationalError("UPDATE orders", {}, Exception("database is locked"))

    monkeypatch.setattr(payments, "transition_order", locked)

    res = await client.post("/payment/alipay/notify", data=_notify(pending_order.order_no))

    assert res.status_code == 500
    assert res.headers["content-type"].startswith("text/plain")
    assert res.text == "failure"
    assert (await _order(db, pending_order.order_id)).status == OrderStatus.PENDING
