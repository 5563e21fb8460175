from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.logging import get_logger
from cardshop.core.security import hash_password_async, verify_password_async
from cardshop.models.card import Card, CardStatus
from cardshop.models.order import Order, OrderStatus
from cardshop.models.product import Product
from cardshop.models.user import User
from cardshop.services.order_state import InvalidTransition, transition_order
from cardshop.services.reservations import normalize_email

logger = get_logger("orders")
audit_logger = get_logger("audit")

# how many recent orders for one email are checked against the password
LOOKUP_BY_EMAIL_SCAN = 20
HISTORY_BY_EMAIL_SCAN = 100

LOOKUP_FAILED_MESSAGE = "Order not found or password incorrect"

# lookups that match no order still pay for one bcrypt check
_missing_order_hash: Optional[str] = None


class OrdersError(Exception):
    pass


class LookupFailed(OrdersError):
    """Unknown order and wrong password are deliberately the same error."""

    def __init__(self):
        super().__init__(LOOKUP_FAILED_MESSAGE)


class CompletionListener(Protocol):
    def order_completed(self, order_id: int) -> None:
        ...


# -------------------------
# Admin
# -------------------------
def _card_counts_subquery():
    return (
        select(
            Card.order_id.label("order_id"),
            func.count().label("cards_count"),
            func.sum(case((Card.status == CardStatus.RESERVED, 1), else_=0)).label("reserved_count"),
            func.sum(case((Card.status == CardStatus.SOLD, 1), else_=0)).label("sold_count"),
        )
        .where(Card.order_id.is_not(None))
        .group_by(Card.order_id)
        .subquery()
    )


def _order_row(o: Order, product: Optional[Product], counts: tuple[int, int, int]) -> dict:
    cards_count, reserved_count, sold_count = counts
    return {
        "id": int(o.id),
        "order_no": o.order_no,
        "email": o.email,
        "product": {
            "id": int(o.product_id),
            "name": product.name if product else "",
            "price": product.price if product else None,
        },
        "quantity": int(o.quantity),
        "amount": o.amount,
        "status": o.status,
        "paid_at": o.paid_at,
        "client_ip": o.client_ip,
        "created_at": o.created_at,
        "cards_count": int(cards_count or 0),
        "reserved_cards_count": int(reserved_count or 0),
        "sold_cards_count": int(sold_count or 0),
    }


async def list_orders(
    db: AsyncSession,
    *,
    status: Optional[str] = None,
    email: Optional[str] = None,
    order_no: Optional[str] = None,
    product_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    filters = []

    if status is not None and status != "ALL":
        filters.append(Order.status == status)
    if email:
        filters.append(Order.email == normalize_email(email))
    if order_no:
        filters.append(Order.order_no == order_no.strip())
    if product_id is not None:
        filters.append(Order.product_id == product_id)
    if date_from is not None:
        filters.append(Order.created_at >= date_from)
    if date_to is not None:
        filters.append(Order.created_at <= date_to)

    where_clause = and_(*filters) if filters else None

    total_stmt = select(func.count()).select_from(Order)
    if where_clause is not None:
        total_stmt = total_stmt.where(where_clause)
    total = int((await db.execute(total_stmt)).scalar_one())

    counts = _card_counts_subquery()
    stmt = (
        select(Order, counts.c.cards_count, counts.c.reserved_count, counts.c.sold_count)
        .outerjoin(counts, counts.c.order_id == Order.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(page_size)
        .offset((page - 1) * page_size)
    )
    if where_clause is not None:
        stmt = stmt.where(where_clause)

    rows = (await db.execute(stmt)).all()

    items = [
        _order_row(o, o.product, (cards_count, reserved_count, sold_count))
        for o, cards_count, reserved_count, sold_count in rows
    ]

    return {
        "items": items,
        "page": page,
        "page_size": page_size,
        "total": total,
        "total_pages": max(1, -(-total // page_size)),
    }


async def get_order_detail(db: AsyncSession, *, order_id: int) -> dict:
    counts = _card_counts_subquery()
    res = await db.execute(
        select(Order, counts.c.cards_count, counts.c.reserved_count, counts.c.sold_count)
        .outerjoin(counts, counts.c.order_id == Order.id)
        .where(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    row = res.first()
    if row is None:
        raise OrdersError("Order not found")
    o, cards_count, reserved_count, sold_count = row
    return _order_row(o, o.product, (cards_count, reserved_count, sold_count))


async def admin_set_status(
    db: AsyncSession,
    *,
    order_id: int,
    target: str,
    actor: User,
    listener: CompletionListener,
    note: Optional[str] = None,
) -> dict:
    """
    Admin override through the state machine. Raises OrderNotFound or
    InvalidTransition from ``transition_order`` unchanged.
    """
    result = await transition_order(db, order_id=order_id, target=target)

    if result.changed and target == OrderStatus.COMPLETED:
        audit_logger.info(
            "order completed by admin",
            extra={
                "actor_id": int(actor.id),
                "actor_email": actor.email,
                "order_id": int(order_id),
                "at": datetime.now(timezone.utc).isoformat(),
                "note": note,
            },
        )
        listener.order_completed(int(order_id))
    elif result.changed:
        audit_logger.info(
            "order status changed by admin",
            extra={
                "actor_id": int(actor.id),
                "actor_email": actor.email,
                "order_id": int(order_id),
                "from": result.previous_status,
                "to": target,
                "note": note,
            },
        )

    return await get_order_detail(db, order_id=order_id)


async def admin_soft_close(db: AsyncSession, *, order_id: int, actor: User) -> dict:
    """Admin DELETE: close instead of deleting the row. Idempotent on CLOSED."""
    result = await transition_order(db, order_id=order_id, target=OrderStatus.CLOSED)
    if result.changed:
        audit_logger.info(
            "order closed by admin",
            extra={"actor_id": int(actor.id), "actor_email": actor.email, "order_id": int(order_id)},
        )
    return await get_order_detail(db, order_id=order_id)


# -------------------------
# Buyer self-service
# -------------------------
async def _claimed_card_contents(db: AsyncSession, order_id: int) -> list[str]:
    # Only cards this order holds. UNSOLD cards are never returned.
    res = await db.execute(
        select(Card.content)
        .where(Card.order_id == order_id, Card.status.in_(CardStatus.CLAIMED))
        .order_by(Card.id.asc())
    )
    return list(res.scalars().all())


async def _lookup_view(db: AsyncSession, order: Order) -> dict:
    product_name = order.product.name if order.product else ""
    if order.status == OrderStatus.PENDING:
        return {
            "order_no": order.order_no,
            "product_name": product_name,
            "created_at": order.created_at,
            "status": order.status,
            "cards": [],
            "is_pending": True,
        }

    contents = await _claimed_card_contents(db, int(order.id))
    return {
        "order_no": order.order_no,
        "product_name": product_name,
        "created_at": order.created_at,
        "status": order.status,
        "cards": [{"content": c} for c in contents],
        "is_pending": False,
    }


async def _complete_on_lookup(
    db: AsyncSession, order: Order, listener: CompletionListener
) -> Order:
    """
    A verified password holder is taken as proof of out-of-band payment,
    so a PENDING order is completed here through the state machine.
    """
    if order.status != OrderStatus.PENDING:
        return order

    order_id = int(order.id)
    try:
        result = await transition_order(db, order_id=order_id, target=OrderStatus.COMPLETED)
    except InvalidTransition:
        # closed by the sweeper between our read and the transition
        res = await db.execute(
            select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        )
        return res.scalar_one()

    if result.changed:
        logger.info("order completed by buyer lookup", extra={"order_id": order_id})
        listener.order_completed(order_id)
    return result.order


async def _check_against_missing_order(password: str) -> None:
    global _missing_order_hash
    if _missing_order_hash is None:
        _missing_order_hash = await hash_password_async("no-such-order")
    await verify_password_async(password, _missing_order_hash)


async def lookup_by_order_no(
    db: AsyncSession,
    *,
    order_no: str,
    password: str,
    listener: CompletionListener,
) -> dict:
    res = await db.execute(select(Order).where(Order.order_no == order_no.strip()))
    order = res.scalar_one_or_none()

    if order is None:
        await _check_against_missing_order(password.strip())
        raise LookupFailed()
    if not await verify_password_async(password.strip(), order.password_hash):
        raise LookupFailed()

    order = await _complete_on_lookup(db, order, listener)
    return await _lookup_view(db, order)


async def _orders_matching_password(
    db: AsyncSession, *, email: str, password: str, scan: int
) -> list[Order]:
    res = await db.execute(
        select(Order)
        .where(Order.email == normalize_email(email))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(scan)
    )
    orders = res.scalars().all()
    if not orders:
        await _check_against_missing_order(password.strip())
        return []

    matching = []
    for order in orders:
        if await verify_password_async(password.strip(), order.password_hash):
            matching.append(order)
    return matching


async def lookup_by_email(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    listener: CompletionListener,
) -> dict:
    """Most recent order for this email whose password matches."""
    matching = await _orders_matching_password(
        db, email=email, password=password, scan=LOOKUP_BY_EMAIL_SCAN
    )
    if not matching:
        raise LookupFailed()

    order = await _complete_on_lookup(db, matching[0], listener)
    return await _lookup_view(db, order)


async def list_by_email(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    """Order history for a buyer. Read-only, no card contents."""
    matching = await _orders_matching_password(
        db, email=email, password=password, scan=HISTORY_BY_EMAIL_SCAN
    )
    if not matching:
        raise LookupFailed()

    total = len(matching)
    start = (page - 1) * page_size
    data = [
        {
            "order_no": o.order_no,
            "created_at": o.created_at,
            "status": o.status,
            "product_name": o.product.name if o.product else "",
            "quantity": int(o.quantity),
            "amount": o.amount,
        }
        for o in matching[start:start + page_size]
    ]
    return {
        "data": data,
        "meta": {
            "total": total,
            "page": page,
            "page_size": page_size,
            "total_pages": max(1, -(-total // page_size)),
        },
    }
