from __future__ import annotations

import hmac

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.config import Settings
from cardshop.core.db import get_db
from cardshop.core.rate_limit import RateLimiter
from cardshop.core.security import decode_token, TokenError
from cardshop.core.tasks import BackgroundTaskGroup
from cardshop.integrations.alipay_gateway import AlipayGateway
from cardshop.integrations.turnstile_client import TurnstileClient
from cardshop.models.user import User
from cardshop.services.notifications import Notifier

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


# -------------------------
# Process-wide collaborators (built once in create_app)
# -------------------------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_task_group(request: Request) -> BackgroundTaskGroup:
    return request.app.state.tasks


def get_payment_gateway(request: Request) -> AlipayGateway:
    return request.app.state.payment_gateway


def get_turnstile(request: Request) -> TurnstileClient | None:
    return request.app.state.turnstile


# -------------------------
# Admin principal
# -------------------------
async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        payload = decode_token(settings, token)
    except TokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Token missing user id")

    try:
        user_id_int = int(user_id)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid user id in token")

    res = await db.execute(select(User).where(User.id == user_id_int))
    user = res.scalar_one_or_none()

    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User inactive")

    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin only")
    return current_user


# -------------------------
# Client identity / abuse guards
# -------------------------
def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _consume(limiter: RateLimiter, request: Request, message: str) -> None:
    key = get_client_ip(request)
    if key == "unknown":
        return
    if not limiter.consume(key):
        raise HTTPException(status_code=429, detail=message)


def order_create_rate_limit(request: Request) -> None:
    _consume(request.app.state.order_create_limiter, request, "Too many orders. Please try again later.")


def order_query_rate_limit(request: Request) -> None:
    _consume(request.app.state.order_query_limiter, request, "Too many requests. Please try again later.")


# -------------------------
# Scheduler auth
# -------------------------
def require_cron_secret(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    # fail closed: no secret configured means nobody may call the sweeper
    secret = settings.CRON_SECRET
    if not secret:
        raise HTTPException(status_code=401, detail="Unauthorized")
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")
