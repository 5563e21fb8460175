from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.logging import get_logger
from cardshop.models.order import Order, OrderStatus
from cardshop.services.order_state import InvalidTransition, transition_order

logger = get_logger("sweeper")


@dataclass
class SweepReport:
    closed: int
    total: int


async def close_expired_orders(
    db: AsyncSession,
    *,
    timeout_seconds: float,
    now: datetime | None = None,
) -> SweepReport:
    """
    Close PENDING orders older than the timeout and release their cards.

    Every order goes through the state machine, so an order a payment
    notify completed in the meantime is skipped (COMPLETED -> CLOSED is
    forbidden) rather than closed. Per-order failures are logged and
    counted out; the sweep itself never raises for them.
    """
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=timeout_seconds)

    res = await db.execute(
        select(Order.id)
        .where(Order.status == OrderStatus.PENDING, Order.created_at < cutoff)
        .order_by(Order.created_at.asc())
    )
    candidate_ids = [int(x) for x in res.scalars().all()]
    await db.rollback()

    closed = 0
    for order_id in candidate_ids:
        try:
            result = await transition_order(db, order_id=order_id, target=OrderStatus.CLOSED)
        except InvalidTransition as e:
            logger.info("expired order no longer pending", extra={"order_id": order_id, "status": e.current})
            continue
        except Exception as e:
            logger.error("failed to close expired order", extra={"order_id": order_id, "error": repr(e)})
            continue

        if result.changed:
            closed += 1

    logger.info("expiry sweep done", extra={"closed": closed, "total": len(candidate_ids)})
    return SweepReport(closed=closed, total=len(candidate_ids))
