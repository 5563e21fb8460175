from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.db import get_db
from cardshop.core.deps import require_admin
from cardshop.models.user import User
from cardshop.schemas.products import AdminProductCreateIn, AdminProductOut, AdminProductStatusIn
from cardshop.services.products import (
    ProductNotFound,
    ProductsError,
    create_product,
    list_products,
    set_product_status,
)

router = APIRouter(prefix="/admin/products", tags=["Admin Products"])


@router.get("", response_model=List[AdminProductOut])
async def admin_list_products(
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
):
    rows = await list_products(db, status=status)
    return [AdminProductOut(**r) for r in rows]


@router.post("", response_model=AdminProductOut, status_code=201)
async def admin_create_product(
    payload: AdminProductCreateIn,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
):
    try:
        p = await create_product(
            db,
            name=payload.name,
            slug=payload.slug,
            price=payload.price,
            max_quantity=payload.max_quantity,
            description=payload.description,
        )
    except ProductsError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return AdminProductOut.model_validate(p)


@router.patch("/{product_id}/status", response_model=AdminProductOut)
async def admin_set_product_status(
    product_id: int,
    payload: AdminProductStatusIn,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
):
    try:
        p = await set_product_status(db, product_id=product_id, status=payload.status)
    except ProductNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return AdminProductOut.model_validate(p)
