# cardshop/models/product.py
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from cardshop.core.db import Base, BigIntPK


class ProductStatus:
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"

    ALL = (ACTIVE, INACTIVE)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("price > 0", name="products_price_positive_chk"),
        CheckConstraint("max_quantity >= 1", name="products_max_quantity_chk"),
        CheckConstraint("status IN ('ACTIVE','INACTIVE')", name="products_status_check"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    max_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=10)

    # Never hard-deleted: orders and cards reference it. INACTIVE is the soft delete.
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ProductStatus.ACTIVE)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc,
        server_default=func.now(),
    )
