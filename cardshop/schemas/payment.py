from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class CreatePaymentIn(BaseModel):
    order_no: str = Field(..., min_length=1, max_length=64)
    client_type: Literal["pc", "wap"] = "pc"


class CreatePaymentOut(BaseModel):
    payment_url: str
