# cardshop/models/card.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cardshop.core.db import Base, BigIntPK


class CardStatus:
    UNSOLD = "UNSOLD"
    RESERVED = "RESERVED"
    SOLD = "SOLD"

    ALL = (UNSOLD, RESERVED, SOLD)
    # statuses that carry an order_id
    CLAIMED = (RESERVED, SOLD)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Card(Base):
    __tablename__ = "cards"
    __table_args__ = (
        CheckConstraint("status IN ('UNSOLD','RESERVED','SOLD')", name="cards_status_check"),
        # order_id is set exactly when the card is claimed by an order
        CheckConstraint(
            "(status = 'UNSOLD' AND order_id IS NULL)"
            " OR (status IN ('RESERVED','SOLD') AND order_id IS NOT NULL)",
            name="cards_order_claim_chk",
        ),
        Index("ix_cards_product_status_created", "product_id", "status", "created_at"),
        Index("ix_cards_order_id", "order_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("products.id"), nullable=False
    )

    # opaque secret (account credentials / license key)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=CardStatus.UNSOLD)

    # Back-reference only. The order claims the card, not the other way round.
    order_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("orders.id"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc,
        server_default=func.now(),
    )

    order = relationship("Order", back_populates="cards")
