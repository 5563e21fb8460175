from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from cardshop.core.db import Base, BigIntPK


class SubscriptionStatus:
    PENDING = "PENDING"
    NOTIFIED = "NOTIFIED"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class RestockSubscription(Base):
    __tablename__ = "restock_subscriptions"
    __table_args__ = (
        UniqueConstraint("product_id", "email", name="restock_subscriptions_product_email_uq"),
        CheckConstraint("status IN ('PENDING','NOTIFIED')", name="restock_subscriptions_status_check"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("products.id"), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    client_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=SubscriptionStatus.PENDING)
    notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc,
        server_default=func.now(),
    )
