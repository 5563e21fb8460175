from __future__ import annotations

from decimal import Decimal
from typing import Mapping, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.logging import get_logger
from cardshop.integrations.alipay_gateway import TRADE_SUCCESS_STATUSES
from cardshop.models.order import Order, OrderStatus
from cardshop.services.order_state import InvalidTransition, TransitionError, transition_order
from cardshop.services.orders import CompletionListener

logger = get_logger("payment")


class PaymentError(Exception):
    pass


class OrderNotPayable(PaymentError):
    pass


class PaymentNotConfigured(PaymentError):
    pass


class NotifyVerifier(Protocol):
    def verify_notify_signature(self, payload: Mapping[str, str]) -> bool:
        ...


def format_amount(amount: Decimal) -> str:
    return f"{Decimal(amount).quantize(Decimal('0.01'))}"


async def handle_payment_notify(
    db: AsyncSession,
    payload: Mapping[str, str],
    *,
    verifier: NotifyVerifier,
    listener: CompletionListener,
) -> bool:
    """
    Process an asynchronous payment notification.

    Returns True when the provider should get ``success`` (including
    redelivery for an order that is already terminal) and False for
    ``failure``. Nothing is written unless signature, order and amount
    all check out.
    """
    if not verifier.verify_notify_signature(payload):
        logger.warning("notify signature verification failed", extra={"out_trade_no": payload.get("out_trade_no")})
        return False

    trade_status = payload.get("trade_status")
    out_trade_no = payload.get("out_trade_no")
    total_amount = payload.get("total_amount")

    if not out_trade_no or not total_amount:
        return False

    # WAIT_BUYER_PAY / TRADE_CLOSED: acknowledged, nothing to do
    if trade_status not in TRADE_SUCCESS_STATUSES:
        return True

    res = await db.execute(select(Order).where(Order.order_no == out_trade_no))
    order = res.scalar_one_or_none()
    if order is None:
        logger.warning("notify for unknown order", extra={"out_trade_no": out_trade_no})
        return False

    order_amount = format_amount(order.amount)
    if order_amount != total_amount:
        logger.warning(
            "notify amount mismatch",
            extra={"order_no": out_trade_no, "order_amount": order_amount, "total_amount": total_amount},
        )
        return False

    if order.status == OrderStatus.COMPLETED:
        return True

    if order.status != OrderStatus.PENDING:
        logger.warning(
            "paid notify but order not PENDING (possible race with expiry sweep)",
            extra={"order_no": out_trade_no, "status": order.status},
        )
        return True

    order_id = int(order.id)
    try:
        result = await transition_order(db, order_id=order_id, target=OrderStatus.COMPLETED)
    except InvalidTransition as e:
        logger.warning(
            "order left PENDING before completion",
            extra={"order_no": out_trade_no, "status": e.current},
        )
        return True
    except TransitionError as e:
        logger.error("notify transition failed", extra={"order_no": out_trade_no, "error": str(e)})
        return False

    if result.changed:
        listener.order_completed(order_id)

    return True


async def get_payable_order(db: AsyncSession, *, order_no: str) -> Order:
    res = await db.execute(select(Order).where(Order.order_no == order_no.strip()))
    order = res.scalar_one_or_none()
    if order is None:
        raise PaymentError("Order not found")
    if order.status != OrderStatus.PENDING:
        raise OrderNotPayable("Order is not pending payment")
    return order
