from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.models.product import Product, ProductStatus
from cardshop.models.restock_subscription import RestockSubscription, SubscriptionStatus
from cardshop.services.reservations import count_unsold, normalize_email


class RestockError(Exception):
    pass


class RestockProductUnavailable(RestockError):
    pass


async def subscribe(
    db: AsyncSession,
    *,
    product_id: int,
    email: str,
    client_ip: str | None = None,
) -> RestockSubscription:
    """Create or re-arm (back to PENDING) a subscription for an out-of-stock product."""
    product = await db.get(Product, product_id)
    if product is None or product.status != ProductStatus.ACTIVE:
        raise RestockProductUnavailable("Product not found or unavailable")

    if await count_unsold(db, product_id) > 0:
        raise RestockError("Product is in stock")

    normalized = normalize_email(email)
    try:
        res = await db.execute(
            select(RestockSubscription)
            .where(
                RestockSubscription.product_id == product_id,
                RestockSubscription.email == normalized,
            )
            .with_for_update()
        )
        sub = res.scalar_one_or_none()
        if sub is None:
            sub = RestockSubscription(
                product_id=product_id,
                email=normalized,
                client_ip=client_ip,
                status=SubscriptionStatus.PENDING,
            )
            db.add(sub)
        else:
            sub.status = SubscriptionStatus.PENDING
            sub.notified_at = None

        await db.commit()
        await db.refresh(sub)
        return sub
    except Exception:
        await db.rollback()
        raise


async def is_subscribed(db: AsyncSession, *, product_id: int, email: str) -> bool:
    res = await db.execute(
        select(RestockSubscription.status).where(
            RestockSubscription.product_id == product_id,
            RestockSubscription.email == normalize_email(email),
        )
    )
    status = res.scalar_one_or_none()
    return status == SubscriptionStatus.PENDING
