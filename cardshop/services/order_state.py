from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.models.card import Card, CardStatus
from cardshop.models.order import Order, OrderStatus


class TransitionError(Exception):
    pass


class OrderNotFound(TransitionError):
    pass


class InvalidTransition(TransitionError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invalid status transition: {current} -> {target}")


# Only PENDING moves. COMPLETED and CLOSED are terminal.
_ALLOWED = {
    (OrderStatus.PENDING, OrderStatus.COMPLETED),
    (OrderStatus.PENDING, OrderStatus.CLOSED),
}

# one re-read when a concurrent writer moved the row between our read and write
_MAX_ATTEMPTS = 2


def is_valid_transition(current: str, target: str) -> bool:
    if current == target:
        return True
    return (current, target) in _ALLOWED


@dataclass
class TransitionResult:
    order: Order
    previous_status: str
    changed: bool


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


async def _load_for_update(db: AsyncSession, order_id: int) -> Order | None:
    res = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def transition_order(
    db: AsyncSession,
    *,
    order_id: int,
    target: str,
    now: datetime | None = None,
) -> TransitionResult:
    """
    The single write path for Order.status and for the card side effects
    of a status change. Runs as one transaction and commits it.

      PENDING -> COMPLETED: paid_at = now, RESERVED cards -> SOLD
      PENDING -> CLOSED:    RESERVED cards -> UNSOLD, order_id cleared
      X -> X:               no-op, changed=False
      anything else:        InvalidTransition, nothing written

    The order row update is conditional on the status read, so a writer
    that lost a race re-reads once and re-evaluates instead of
    overwriting a terminal state.
    """
    if target not in OrderStatus.ALL:
        raise TransitionError(f"Unknown order status: {target}")

    try:
        for _attempt in range(_MAX_ATTEMPTS):
            order = await _load_for_update(db, order_id)
            if order is None:
                raise OrderNotFound("Order not found")

            current = order.status

            if current == target:
                await db.commit()
                return TransitionResult(order=order, previous_status=current, changed=False)

            if not is_valid_transition(current, target):
                raise InvalidTransition(current, target)

            ts = now or _now_utc()
            values: dict = {"status": target, "updated_at": ts}
            if target == OrderStatus.COMPLETED:
                values["paid_at"] = ts

            res = await db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                await db.rollback()
                continue

            if target == OrderStatus.COMPLETED:
                card_values = {"status": CardStatus.SOLD, "updated_at": ts}
            else:
                # SOLD cards (if any) stay with the order
                card_values = {"status": CardStatus.UNSOLD, "order_id": None, "updated_at": ts}

            await db.execute(
                update(Card)
                .where(Card.order_id == order_id, Card.status == CardStatus.RESERVED)
                .values(**card_values)
                .execution_options(synchronize_session=False)
            )

            await db.commit()

            fresh = await db.execute(
                select(Order)
                .where(Order.id == order_id)
                .execution_options(populate_existing=True)
            )
            return TransitionResult(order=fresh.scalar_one(), previous_status=current, changed=True)

        raise TransitionError("Order status changed concurrently; giving up.")

    except Exception:
        await db.rollback()
        raise
