from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.db import get_db
from cardshop.core.deps import get_notifier, require_admin
from cardshop.models.order import OrderStatus
from cardshop.models.user import User
from cardshop.schemas.orders import AdminOrderOut, AdminOrdersListOut, UpdateOrderStatusIn
from cardshop.services.notifications import Notifier
from cardshop.services.order_state import InvalidTransition, OrderNotFound
from cardshop.services.orders import (
    OrdersError,
    admin_set_status,
    admin_soft_close,
    get_order_detail,
    list_orders,
)


router = APIRouter(prefix="/admin/orders", tags=["Admin Orders"])


@router.get("", response_model=AdminOrdersListOut)
async def admin_list_orders(
    status: Optional[str] = None,
    email: Optional[str] = None,
    order_no: Optional[str] = None,
    product_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> AdminOrdersListOut:
    if status is not None and status != "ALL" and status not in OrderStatus.ALL:
        raise HTTPException(status_code=400, detail="Invalid status filter")

    data = await list_orders(
        db,
        status=status,
        email=email,
        order_no=order_no,
        product_id=product_id,
        date_from=date_from,
        date_to=date_to,
        page=page,
        page_size=page_size,
    )
    return AdminOrdersListOut(**data)


@router.get("/{order_id}", response_model=AdminOrderOut)
async def admin_get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> AdminOrderOut:
    try:
        data = await get_order_detail(db, order_id=order_id)
        return AdminOrderOut(**data)
    except OrdersError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/{order_id}", response_model=AdminOrderOut)
async def admin_update_order_status(
    order_id: int,
    payload: UpdateOrderStatusIn,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    admin: User = Depends(require_admin),
) -> AdminOrderOut:
    try:
        data = await admin_set_status(
            db, order_id=order_id, target=payload.status, actor=admin, listener=notifier, note=payload.note
        )
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return AdminOrderOut(**data)


@router.delete("/{order_id}", response_model=AdminOrderOut)
async def admin_close_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> AdminOrderOut:
    try:
        data = await admin_soft_close(db, order_id=order_id, actor=admin)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return AdminOrderOut(**data)
