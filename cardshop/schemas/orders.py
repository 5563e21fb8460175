from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field


# -------------------------
# Public
# -------------------------
class CreateOrderIn(BaseModel):
    product_id: int
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    quantity: int = Field(..., ge=1)
    turnstile_token: Optional[str] = None


class CreateOrderOut(BaseModel):
    order_no: str
    amount: float
    payment_url: Optional[str] = None


class OrderLookupIn(BaseModel):
    order_no: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=6, max_length=128)


class OrderLookupByEmailIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)


class OrdersByEmailIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class CardContentOut(BaseModel):
    content: str


class OrderLookupOut(BaseModel):
    order_no: str
    product_name: str = ""
    created_at: datetime
    status: str
    cards: List[CardContentOut] = Field(default_factory=list)
    is_pending: bool = False


class OrderHistoryRowOut(BaseModel):
    order_no: str
    created_at: datetime
    status: str
    product_name: str = ""
    quantity: int
    amount: float


class PageMetaOut(BaseModel):
    total: int
    page: int
    page_size: int
    total_pages: int


class OrdersByEmailOut(BaseModel):
    data: List[OrderHistoryRowOut] = Field(default_factory=list)
    meta: PageMetaOut


# -------------------------
# Admin
# -------------------------
class OrderProductOut(BaseModel):
    id: int
    name: str = ""
    price: Optional[float] = None


class AdminOrderOut(BaseModel):
    id: int
    order_no: str
    email: str
    product: OrderProductOut
    quantity: int
    amount: float
    status: str
    paid_at: Optional[datetime] = None
    client_ip: Optional[str] = None
    created_at: datetime

    cards_count: int = 0
    reserved_cards_count: int = 0
    sold_cards_count: int = 0


class AdminOrdersListOut(BaseModel):
    items: List[AdminOrderOut] = Field(default_factory=list)
    page: int
    page_size: int
    total: int
    total_pages: int


class UpdateOrderStatusIn(BaseModel):
    status: Literal["COMPLETED", "CLOSED"]
    note: Optional[str] = Field(default=None, max_length=500)
