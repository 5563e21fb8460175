from __future__ import annotations

from pydantic import BaseModel, EmailStr


class RestockSubscribeIn(BaseModel):
    product_id: int
    email: EmailStr


class RestockSubscribeOut(BaseModel):
    ok: bool = True
    subscribed: bool


class RestockStatusOut(BaseModel):
    subscribed: bool
