# cardshop/schemas/cards.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

MAX_BULK_IMPORT = 500


class BulkImportCardsIn(BaseModel):
    contents: List[str] = Field(..., min_length=1, max_length=MAX_BULK_IMPORT)


class BulkImportCardsOut(BaseModel):
    imported: int
    total: int


class AdminCardOut(BaseModel):
    id: int
    content: str
    status: str
    order_no: Optional[str] = None
    created_at: datetime


class CardStatsOut(BaseModel):
    UNSOLD: int = 0
    RESERVED: int = 0
    SOLD: int = 0


class AdminCardsListOut(BaseModel):
    cards: List[AdminCardOut] = Field(default_factory=list)
    stats: CardStatsOut
