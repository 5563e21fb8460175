from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cardshop.core.db import Base, BigIntPK
from cardshop.models.card import Card


class OrderStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CLOSED = "CLOSED"

    ALL = (PENDING, COMPLETED, CLOSED)
    TERMINAL = (COMPLETED, CLOSED)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("status IN ('PENDING','COMPLETED','CLOSED')", name="orders_status_check"),
        CheckConstraint("quantity >= 1", name="orders_quantity_chk"),
        CheckConstraint("amount > 0", name="orders_amount_positive_chk"),
        Index("ix_orders_status_created", "status", "created_at"),
        Index("ix_orders_client_ip_status", "client_ip", "status"),
        Index("ix_orders_email_created", "email", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    # Public identifier shared with the buyer and the payment provider (out_trade_no).
    order_no: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)

    product_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("products.id"),
        nullable=False,
    )

    email: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=OrderStatus.PENDING)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    client_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        onupdate=_now_utc,
        server_default=func.now(),
    )

    product = relationship("Product", lazy="selectin")

    cards: Mapped[List["Card"]] = relationship(
        "Card",
        back_populates="order",
        lazy="selectin",
    )
