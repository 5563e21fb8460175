from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


class AdminProductCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=255, pattern=r"^[a-zA-Z0-9-]+$")
    price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    max_quantity: int = Field(default=10, ge=1, le=1000)
    description: Optional[str] = None


class AdminProductStatusIn(BaseModel):
    status: Literal["ACTIVE", "INACTIVE"]


class AdminProductOut(BaseModel):
    id: int
    name: str
    slug: str
    price: float
    max_quantity: int
    status: str
    stock: int = 0
    created_at: datetime

    class Config:
        from_attributes = True
