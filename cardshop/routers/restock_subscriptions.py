from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import EmailStr
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.db import get_db
from cardshop.core.deps import get_client_ip, order_query_rate_limit
from cardshop.schemas.restock import RestockStatusOut, RestockSubscribeIn, RestockSubscribeOut
from cardshop.services.restock import (
    RestockError,
    RestockProductUnavailable,
    is_subscribed,
    subscribe,
)

router = APIRouter(prefix="/restock-subscriptions", tags=["Restock"])


@router.post("", response_model=RestockSubscribeOut, dependencies=[Depends(order_query_rate_limit)])
async def subscribe_restock(
    payload: RestockSubscribeIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> RestockSubscribeOut:
    client_ip = get_client_ip(request)
    try:
        await subscribe(
            db,
            product_id=payload.product_id,
            email=payload.email,
            client_ip=None if client_ip == "unknown" else client_ip,
        )
    except RestockProductUnavailable as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RestockError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return RestockSubscribeOut(subscribed=True)


@router.get("/status", response_model=RestockStatusOut, dependencies=[Depends(order_query_rate_limit)])
async def restock_status(
    product_id: int = Query(...),
    email: EmailStr = Query(...),
    db: AsyncSession = Depends(get_db),
) -> RestockStatusOut:
    return RestockStatusOut(subscribed=await is_subscribed(db, product_id=product_id, email=email))
