from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.config import Settings
from cardshop.core.db import get_db
from cardshop.core.deps import get_settings, require_cron_secret
from cardshop.schemas.sweeper import SweepOut
from cardshop.services.expiry import close_expired_orders

router = APIRouter(prefix="/cron", tags=["Cron"])


@router.get("/close-expired-orders", response_model=SweepOut, dependencies=[Depends(require_cron_secret)])
async def close_expired(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> SweepOut:
    report = await close_expired_orders(db, timeout_seconds=settings.pending_order_timeout_seconds)
    return SweepOut(closed=report.closed, total=report.total)
