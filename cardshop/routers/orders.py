from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.config import Settings
from cardshop.core.db import get_db
from cardshop.core.deps import (
    get_client_ip,
    get_notifier,
    get_payment_gateway,
    get_settings,
    get_turnstile,
    order_create_rate_limit,
    order_query_rate_limit,
)
from cardshop.core.logging import get_logger
from cardshop.integrations.alipay_gateway import AlipayGateway
from cardshop.integrations.turnstile_client import TurnstileClient
from cardshop.schemas.orders import (
    CreateOrderIn,
    CreateOrderOut,
    OrderLookupByEmailIn,
    OrderLookupIn,
    OrderLookupOut,
    OrdersByEmailIn,
    OrdersByEmailOut,
)
from cardshop.services.notifications import Notifier
from cardshop.services.orders import LookupFailed, list_by_email, lookup_by_email, lookup_by_order_no
from cardshop.services.reservations import (
    OrderRequest,
    OrderRuleViolation,
    ProductUnavailable,
    ReservationFailed,
    create_order,
)

logger = get_logger("orders")

router = APIRouter(prefix="/orders", tags=["Orders"])


async def _check_bot_challenge(
    turnstile: TurnstileClient | None,
    token: str | None,
    client_ip: str,
) -> None:
    if turnstile is None:
        return

    if not token or not token.strip():
        raise HTTPException(status_code=400, detail="Please complete the security check.")

    result = await turnstile.verify(token.strip(), None if client_ip == "unknown" else client_ip)
    if result.get("success"):
        return

    codes = result.get("error-codes") or []
    logger.warning("bot challenge failed", extra={"client_ip": client_ip, "error_codes": codes})
    if "timeout-or-duplicate" in codes:
        raise HTTPException(
            status_code=400,
            detail="Security check expired. Please refresh the page and try again.",
        )
    raise HTTPException(status_code=400, detail="Security check failed. Please try again.")


@router.post("", response_model=CreateOrderOut, dependencies=[Depends(order_create_rate_limit)])
async def create_order_endpoint(
    payload: CreateOrderIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    gateway: AlipayGateway = Depends(get_payment_gateway),
    turnstile: TurnstileClient | None = Depends(get_turnstile),
) -> CreateOrderOut:
    client_ip = get_client_ip(request)

    await _check_bot_challenge(turnstile, payload.turnstile_token, client_ip)

    try:
        reserved = await create_order(
            db,
            OrderRequest(
                product_id=payload.product_id,
                email=payload.email,
                password=payload.password,
                quantity=payload.quantity,
                client_ip=None if client_ip == "unknown" else client_ip,
            ),
            max_order_amount=settings.MAX_ORDER_AMOUNT,
            max_pending_per_ip=settings.MAX_PENDING_ORDERS_PER_IP,
            retries=settings.ORDER_NO_RETRIES,
            gateway=gateway if gateway.configured else None,
        )
    except ProductUnavailable as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OrderRuleViolation as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ReservationFailed as e:
        logger.error("order reservation failed", extra={"product_id": payload.product_id, "error": str(e)})
        raise HTTPException(status_code=500, detail="Failed to create order. Please try again.")

    return CreateOrderOut(
        order_no=reserved.order_no,
        amount=reserved.amount,
        payment_url=reserved.payment_url,
    )


@router.post("/lookup", response_model=OrderLookupOut, dependencies=[Depends(order_query_rate_limit)])
async def lookup_order(
    payload: OrderLookupIn,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> OrderLookupOut:
    try:
        data = await lookup_by_order_no(
            db, order_no=payload.order_no, password=payload.password, listener=notifier
        )
    except LookupFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    return OrderLookupOut(**data)


@router.post("/lookup-by-email", response_model=OrderLookupOut, dependencies=[Depends(order_query_rate_limit)])
async def lookup_order_by_email(
    payload: OrderLookupByEmailIn,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> OrderLookupOut:
    try:
        data = await lookup_by_email(
            db, email=payload.email, password=payload.password, listener=notifier
        )
    except LookupFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    return OrderLookupOut(**data)


@router.post("/by-email", response_model=OrdersByEmailOut, dependencies=[Depends(order_query_rate_limit)])
async def orders_by_email(
    payload: OrdersByEmailIn,
    db: AsyncSession = Depends(get_db),
) -> OrdersByEmailOut:
    try:
        data = await list_by_email(
            db,
            email=payload.email,
            password=payload.password,
            page=payload.page,
            page_size=payload.page_size,
        )
    except LookupFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    return OrdersByEmailOut(**data)
