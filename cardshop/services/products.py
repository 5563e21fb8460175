from __future__ import annotations

from decimal import Decimal

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.models.card import Card, CardStatus
from cardshop.models.product import Product, ProductStatus


class ProductsError(Exception):
    pass


class ProductNotFound(ProductsError):
    pass


async def create_product(
    db: AsyncSession,
    *,
    name: str,
    slug: str,
    price: Decimal,
    max_quantity: int,
    description: str | None = None,
) -> Product:
    try:
        p = Product(
            name=name.strip(),
            slug=slug.strip().lower(),
            price=price,
            max_quantity=max_quantity,
            description=description,
            status=ProductStatus.ACTIVE,
        )
        db.add(p)
        await db.commit()
        await db.refresh(p)
        return p
    except IntegrityError as e:
        await db.rollback()
        raise ProductsError("Slug already in use") from e
    except Exception:
        await db.rollback()
        raise


async def list_products(db: AsyncSession, *, status: str | None = None) -> list[dict]:
    unsold = func.sum(case((Card.status == CardStatus.UNSOLD, 1), else_=0))
    stmt = (
        select(Product, func.coalesce(unsold, 0))
        .outerjoin(Card, Card.product_id == Product.id)
        .group_by(Product.id)
        .order_by(Product.created_at.desc(), Product.id.desc())
    )
    if status in ProductStatus.ALL:
        stmt = stmt.where(Product.status == status)

    rows = (await db.execute(stmt)).all()
    return [
        {
            "id": int(p.id),
            "name": p.name,
            "slug": p.slug,
            "price": p.price,
            "max_quantity": int(p.max_quantity),
            "status": p.status,
            "stock": int(stock or 0),
            "created_at": p.created_at,
        }
        for p, stock in rows
    ]


async def set_product_status(db: AsyncSession, *, product_id: int, status: str) -> Product:
    # soft delete / restore; products are never removed
    try:
        p = await db.get(Product, product_id)
        if p is None:
            raise ProductNotFound("Product not found")
        p.status = status
        await db.commit()
        await db.refresh(p)
        return p
    except Exception:
        await db.rollback()
        raise
