from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.db import get_db
from cardshop.core.deps import get_notifier, require_admin
from cardshop.models.card import CardStatus
from cardshop.models.user import User
from cardshop.schemas.cards import AdminCardsListOut, BulkImportCardsIn, BulkImportCardsOut
from cardshop.services.cards import (
    CardInUse,
    CardNotFound,
    CardsError,
    ProductMissing,
    delete_card,
    import_cards,
    list_cards,
)
from cardshop.services.notifications import Notifier


router = APIRouter(prefix="/admin", tags=["Admin Cards"])


@router.get("/products/{product_id}/cards", response_model=AdminCardsListOut)
async def admin_list_cards(
    product_id: int,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> AdminCardsListOut:
    if status is not None and status != "ALL" and status not in CardStatus.ALL:
        raise HTTPException(status_code=400, detail="Invalid status filter")
    try:
        data = await list_cards(db, product_id=product_id, status=status)
        return AdminCardsListOut(**data)
    except ProductMissing as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/products/{product_id}/cards", response_model=BulkImportCardsOut, status_code=201)
async def admin_import_cards(
    product_id: int,
    payload: BulkImportCardsIn,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    _: User = Depends(require_admin),
) -> BulkImportCardsOut:
    try:
        data = await import_cards(db, product_id=product_id, contents=payload.contents)
    except ProductMissing as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CardsError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if data["restocked"]:
        notifier.product_restocked(product_id)

    return BulkImportCardsOut(imported=data["imported"], total=data["total"])


@router.delete("/cards/{card_id}")
async def admin_delete_card(
    card_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
):
    try:
        await delete_card(db, card_id=card_id)
    except CardNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CardInUse as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True}
