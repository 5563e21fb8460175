from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardshop.core.config import Settings
from cardshop.core.logging import get_logger
from cardshop.core.tasks import BackgroundTaskGroup
from cardshop.integrations.mailer import Mailer
from cardshop.models.card import Card, CardStatus
from cardshop.models.order import Order, OrderStatus
from cardshop.models.product import Product
from cardshop.models.restock_subscription import RestockSubscription, SubscriptionStatus

logger = get_logger("notify")


async def send_completion_email(
    db: AsyncSession,
    mailer: Mailer,
    settings: Settings,
    order_id: int,
) -> bool:
    """Email the SOLD card contents to the buyer. No-op unless the order is COMPLETED."""
    res = await db.execute(select(Order).where(Order.id == order_id))
    order = res.scalar_one_or_none()
    if order is None or order.status != OrderStatus.COMPLETED:
        return False

    cards_res = await db.execute(
        select(Card.content)
        .where(Card.order_id == order.id, Card.status == CardStatus.SOLD)
        .order_by(Card.id.asc())
    )
    contents = list(cards_res.scalars().all())

    product_name = order.product.name if order.product else ""
    lookup_url = f"{settings.SITE_URL.rstrip('/')}/orders/lookup"

    lines = [
        f"Your order {order.order_no} is complete.",
        "",
        f"Product: {product_name}",
        f"Quantity: {order.quantity}",
        "",
        "Your cards:",
        *[f"  {c}" for c in contents],
        "",
        f"You can look this order up again at {lookup_url} with your order password.",
    ]

    ok = await mailer.send(
        to_email=order.email,
        subject=f"[{settings.SITE_NAME}] Order completed: {order.order_no}",
        body="\n".join(lines),
    )
    if not ok:
        logger.error("completion email not sent", extra={"order_id": order.id, "order_no": order.order_no})
    return ok


async def notify_restock_subscribers(
    db: AsyncSession,
    mailer: Mailer,
    settings: Settings,
    product_id: int,
) -> int:
    product = await db.get(Product, product_id)
    if product is None:
        return 0

    res = await db.execute(
        select(RestockSubscription.id, RestockSubscription.email).where(
            RestockSubscription.product_id == product_id,
            RestockSubscription.status == SubscriptionStatus.PENDING,
        )
    )
    subs = res.all()
    if not subs:
        return 0

    product_url = f"{settings.SITE_URL.rstrip('/')}/products/{product.id}-{product.slug}"
    subject = f"[{settings.SITE_NAME}] {product.name} is back in stock"
    body = f"{product.name} is available again at {product.price}.\n\n{product_url}\n"

    sent_ids: list[int] = []
    for sub_id, email in subs:
        if await mailer.send(to_email=email, subject=subject, body=body):
            sent_ids.append(int(sub_id))

    if sent_ids:
        try:
            await db.execute(
                update(RestockSubscription)
                .where(RestockSubscription.id.in_(sent_ids))
                .values(status=SubscriptionStatus.NOTIFIED, notified_at=datetime.now(timezone.utc))
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    logger.info(
        "restock notifications done",
        extra={"product_id": product_id, "total": len(subs), "sent": len(sent_ids)},
    )
    return len(sent_ids)


class Notifier:
    """
    Fire-and-forget buyer notifications.

    Each send runs on the background task group with its own session; the
    request that triggered it has already committed and returned.
    """

    def __init__(
        self,
        tasks: BackgroundTaskGroup,
        sessionmaker: async_sessionmaker[AsyncSession],
        mailer: Mailer,
        settings: Settings,
    ):
        self.tasks = tasks
        self.sessionmaker = sessionmaker
        self.mailer = mailer
        self.settings = settings

    def order_completed(self, order_id: int) -> None:
        self.tasks.spawn(self._completion(order_id), name=f"completion-email:{order_id}")

    def product_restocked(self, product_id: int) -> None:
        self.tasks.spawn(self._restock(product_id), name=f"restock-notify:{product_id}")

    async def _completion(self, order_id: int) -> None:
        async with self.sessionmaker() as db:
            await send_completion_email(db, self.mailer, self.settings, order_id)

    async def _restock(self, product_id: int) -> None:
        async with self.sessionmaker() as db:
            await notify_restock_subscribers(db, self.mailer, self.settings, product_id)
