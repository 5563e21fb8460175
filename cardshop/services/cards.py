# cardshop/services/cards.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.models.card import Card, CardStatus
from cardshop.models.order import Order
from cardshop.models.product import Product
from cardshop.services.reservations import count_unsold


class CardsError(Exception):
    pass


class ProductMissing(CardsError):
    pass


class CardNotFound(CardsError):
    pass


class CardInUse(CardsError):
    pass


def clean_contents(contents: list[str]) -> list[str]:
    """Trim, drop blanks, de-duplicate keeping first-seen order."""
    seen: dict[str, None] = {}
    for raw in contents:
        c = (raw or "").strip()
        if c and c not in seen:
            seen[c] = None
    return list(seen)


async def _require_product(db: AsyncSession, product_id: int) -> Product:
    product = await db.get(Product, product_id)
    if product is None:
        raise ProductMissing("Product not found")
    return product


async def list_cards(
    db: AsyncSession,
    *,
    product_id: int,
    status: Optional[str] = None,
) -> dict:
    await _require_product(db, product_id)

    stmt = (
        select(Card, Order.order_no)
        .outerjoin(Order, Order.id == Card.order_id)
        .where(Card.product_id == product_id)
        .order_by(Card.created_at.desc(), Card.id.desc())
    )
    if status in CardStatus.ALL:
        stmt = stmt.where(Card.status == status)

    rows = (await db.execute(stmt)).all()

    counts_res = await db.execute(
        select(Card.status, func.count())
        .where(Card.product_id == product_id)
        .group_by(Card.status)
    )
    counts = {s: int(n) for s, n in counts_res.all()}

    return {
        "cards": [
            {
                "id": int(c.id),
                "content": c.content,
                "status": c.status,
                "order_no": order_no,
                "created_at": c.created_at,
            }
            for c, order_no in rows
        ],
        "stats": {s: counts.get(s, 0) for s in CardStatus.ALL},
    }


async def import_cards(
    db: AsyncSession,
    *,
    product_id: int,
    contents: list[str],
) -> dict:
    """
    Bulk import UNSOLD cards. Returns ``{"imported", "total", "restocked"}``;
    ``restocked`` is True when UNSOLD stock went from 0 to >0.
    """
    await _require_product(db, product_id)

    cleaned = clean_contents(contents)
    if not cleaned:
        raise CardsError("No valid card contents to import")

    try:
        before = await count_unsold(db, product_id)

        db.add_all(
            [Card(product_id=product_id, content=c, status=CardStatus.UNSOLD) for c in cleaned]
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return {
        "imported": len(cleaned),
        "total": len(cleaned),
        "restocked": before == 0 and len(cleaned) > 0,
    }


async def delete_card(db: AsyncSession, *, card_id: int) -> None:
    """Only UNSOLD cards may go. RESERVED/SOLD cards are transaction evidence."""
    try:
        card = await db.get(Card, card_id, with_for_update=True)
        if card is None:
            raise CardNotFound("Card not found")
        if card.status != CardStatus.UNSOLD:
            raise CardInUse("Only unsold cards can be deleted")

        res = await db.execute(
            delete(Card).where(Card.id == card_id, Card.status == CardStatus.UNSOLD)
        )
        if res.rowcount != 1:
            # claimed by an order after our read
            raise CardInUse("Only unsold cards can be deleted")

        await db.commit()
    except Exception:
        await db.rollback()
        raise
