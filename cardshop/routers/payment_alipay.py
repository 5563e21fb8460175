from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.db import get_db
from cardshop.core.deps import get_notifier, get_payment_gateway
from cardshop.core.logging import get_logger
from cardshop.integrations.alipay_gateway import AlipayGateway
from cardshop.schemas.payment import CreatePaymentIn, CreatePaymentOut
from cardshop.services.notifications import Notifier
from cardshop.services.payments import (
    OrderNotPayable,
    PaymentError,
    get_payable_order,
    handle_payment_notify,
)

logger = get_logger("payment")

router = APIRouter(prefix="/payment/alipay", tags=["Payment"])


@router.post("/notify", response_class=PlainTextResponse)
async def alipay_notify(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: AlipayGateway = Depends(get_payment_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Asynchronous payment notification. The provider expects a plain-text
    body: ``success`` stops redelivery, anything else is retried.
    """
    form = await request.form()
    payload = {k: v for k, v in form.items() if isinstance(v, str)}

    try:
        ok = await handle_payment_notify(db, payload, verifier=gateway, listener=notifier)
    except SQLAlchemyError as e:
        # the provider only understands the plain-text token; it will redeliver
        logger.error(
            "notify processing failed",
            extra={"out_trade_no": payload.get("out_trade_no"), "error": repr(e)},
            exc_info=e,
        )
        return PlainTextResponse("failure", status_code=500)

    if ok:
        return PlainTextResponse("success")
    return PlainTextResponse("failure", status_code=400)


@router.post("/create", response_model=CreatePaymentOut)
async def alipay_create(
    payload: CreatePaymentIn,
    db: AsyncSession = Depends(get_db),
    gateway: AlipayGateway = Depends(get_payment_gateway),
) -> CreatePaymentOut:
    if not gateway.configured:
        raise HTTPException(status_code=503, detail="Payment is not configured")

    try:
        order = await get_payable_order(db, order_no=payload.order_no)
    except OrderNotPayable as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PaymentError as e:
        raise HTTPException(status_code=404, detail=str(e))

    subject = order.product.name if order.product else order.order_no
    url = gateway.build_pay_url(
        order_no=order.order_no,
        amount=order.amount,
        subject=subject,
        client_type=payload.client_type,
    )
    if not url:
        logger.error("pay url generation returned nothing", extra={"order_no": order.order_no})
        raise HTTPException(status_code=500, detail="Failed to create payment")
    return CreatePaymentOut(payment_url=url)
