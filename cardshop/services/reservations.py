from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.logging import get_logger
from cardshop.core.security import hash_password_async
from cardshop.models.card import Card, CardStatus
from cardshop.models.order import Order, OrderStatus
from cardshop.models.product import Product, ProductStatus

logger = get_logger("orders")

CENTS = Decimal("0.01")


class ReservationError(Exception):
    pass


class ProductUnavailable(ReservationError):
    pass


class OrderRuleViolation(ReservationError):
    """Business-rule rejection (quantity, stock, amount, per-IP ceiling)."""


class InsufficientStock(OrderRuleViolation):
    def __init__(self, available: int):
        self.available = available
        super().__init__(f"Insufficient stock. Available: {available}")


class ReservationFailed(ReservationError):
    pass


class PayUrlBuilder(Protocol):
    def build_pay_url(self, *, order_no: str, amount: Decimal, subject: str, client_type: str = "pc") -> str | None:
        ...


@dataclass(frozen=True)
class OrderRequest:
    product_id: int
    email: str
    password: str
    quantity: int
    client_ip: str | None = None


@dataclass
class ReservedOrder:
    order_id: int
    order_no: str
    amount: Decimal
    payment_url: str | None = None


def generate_order_no() -> str:
    today = datetime.now(timezone.utc).strftime("%Y%m%d")
    return f"FAK{today}{secrets.token_hex(6).upper()}"


def compute_amount(price: Decimal, quantity: int) -> Decimal:
    return (Decimal(price) * int(quantity)).quantize(CENTS, rounding=ROUND_HALF_UP)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


async def count_unsold(db: AsyncSession, product_id: int) -> int:
    res = await db.execute(
        select(func.count())
        .select_from(Card)
        .where(Card.product_id == product_id, Card.status == CardStatus.UNSOLD)
    )
    return int(res.scalar_one())


async def count_pending_for_ip(db: AsyncSession, client_ip: str) -> int:
    res = await db.execute(
        select(func.count())
        .select_from(Order)
        .where(Order.client_ip == client_ip, Order.status == OrderStatus.PENDING)
    )
    return int(res.scalar_one())


def _is_order_no_conflict(e: IntegrityError) -> bool:
    return "order_no" in str(e.orig)


async def _claim_cards(db: AsyncSession, *, product_id: int, quantity: int, order_id: int) -> None:
    # Oldest stock first. Rows locked by a concurrent claim are skipped, and the
    # conditional UPDATE re-checks UNSOLD, so a card can only be claimed once.
    res = await db.execute(
        select(Card.id)
        .where(Card.product_id == product_id, Card.status == CardStatus.UNSOLD)
        .order_by(Card.created_at.asc(), Card.id.asc())
        .limit(quantity)
        .with_for_update(skip_locked=True)
    )
    card_ids = [int(x) for x in res.scalars().all()]
    if len(card_ids) < quantity:
        raise InsufficientStock(len(card_ids))

    upd = await db.execute(
        update(Card)
        .where(Card.id.in_(card_ids), Card.status == CardStatus.UNSOLD)
        .values(status=CardStatus.RESERVED, order_id=order_id, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if upd.rowcount != quantity:
        raise InsufficientStock(max(0, int(upd.rowcount)))


async def create_order(
    db: AsyncSession,
    req: OrderRequest,
    *,
    max_order_amount: Decimal,
    max_pending_per_ip: int,
    retries: int = 3,
    gateway: PayUrlBuilder | None = None,
    order_no_factory: Callable[[], str] = generate_order_no,
) -> ReservedOrder:
    """
    Reserve ``quantity`` cards for a new PENDING order.

    Preconditions are checked in order, each failing with its own error:
      1. product exists and is ACTIVE             -> ProductUnavailable
      2. 1 <= quantity <= product.max_quantity    -> OrderRuleViolation
      3. UNSOLD stock >= quantity                 -> InsufficientStock
      4. 0 < amount <= max_order_amount           -> OrderRuleViolation
      5. PENDING orders for client_ip < ceiling   -> OrderRuleViolation

    Then one transaction inserts the order and claims the cards, re-checking
    stock inside it. Any failure rolls back both: no order row, no card
    changes. An order_no collision retries the transaction with a new number.
    The pay URL is requested after commit and is best-effort.
    """
    product = await db.get(Product, req.product_id)
    if product is None or product.status != ProductStatus.ACTIVE:
        raise ProductUnavailable("Product not found or unavailable")

    if req.quantity < 1 or req.quantity > product.max_quantity:
        raise OrderRuleViolation(f"Quantity must be between 1 and {product.max_quantity}")

    available = await count_unsold(db, product.id)
    if available < req.quantity:
        raise InsufficientStock(available)

    amount = compute_amount(product.price, req.quantity)
    if amount <= 0 or amount > max_order_amount:
        raise OrderRuleViolation(f"Order amount must be between 0.01 and {max_order_amount}")

    # Advisory: read outside the reservation transaction, so concurrent
    # requests from one IP can overshoot the ceiling slightly.
    if req.client_ip:
        pending = await count_pending_for_ip(db, req.client_ip)
        if pending >= max_pending_per_ip:
            raise OrderRuleViolation(
                f"You have {pending} unpaid orders. "
                "Please pay for them or wait for them to expire before placing a new order."
            )

    password_hash = await hash_password_async(req.password.strip())
    email = normalize_email(req.email)
    product_id = int(product.id)
    product_name = product.name

    order_no: str | None = None
    order_id: int | None = None

    # end the read-only transaction from the precondition checks
    await db.rollback()

    for _attempt in range(max(1, retries)):
        candidate = order_no_factory()
        try:
            order = Order(
                order_no=candidate,
                product_id=product_id,
                email=email,
                password_hash=password_hash,
                quantity=req.quantity,
                amount=amount,
                status=OrderStatus.PENDING,
                client_ip=req.client_ip,
            )
            db.add(order)
            await db.flush()  # assigns order.id; raises on order_no collision

            await _claim_cards(db, product_id=product_id, quantity=req.quantity, order_id=order.id)

            await db.commit()
            order_no = candidate
            order_id = int(order.id)
            break

        except IntegrityError as e:
            await db.rollback()
            if not _is_order_no_conflict(e):
                raise ReservationFailed("Could not create order.") from e
            logger.warning("order_no collision, retrying", extra={"order_no": candidate})
            continue

        except Exception:
            await db.rollback()
            raise

    if order_no is None or order_id is None:
        raise ReservationFailed("Could not allocate a unique order number.")

    logger.info(
        "order reserved",
        extra={"order_id": order_id, "order_no": order_no, "product_id": product_id, "quantity": req.quantity},
    )

    payment_url = None
    if gateway is not None:
        try:
            payment_url = gateway.build_pay_url(order_no=order_no, amount=amount, subject=product_name)
        except Exception as e:
            logger.warning("pay url generation failed", extra={"order_no": order_no, "error": repr(e)})
            payment_url = None

    return ReservedOrder(order_id=order_id, order_no=order_no, amount=amount, payment_url=payment_url)
